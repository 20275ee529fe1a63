from .identity_directory import IdentityDirectory, IdentityInfo, SqlIdentityDirectory

__all__ = ['IdentityDirectory', 'IdentityInfo', 'SqlIdentityDirectory']
