from .pin_service import PinService, pin_context, validate_pin

__all__ = ['PinService', 'pin_context', 'validate_pin']
