from .pin_credential import PinCredential

__all__ = ['PinCredential']
