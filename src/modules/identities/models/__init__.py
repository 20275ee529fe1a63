from .identity import Identity, normalize_rut

__all__ = ['Identity', 'normalize_rut']
