from .pin_schemas import SetPinRequest, VerifyPinRequest, PinCredentialResponse

__all__ = ['SetPinRequest', 'VerifyPinRequest', 'PinCredentialResponse']
