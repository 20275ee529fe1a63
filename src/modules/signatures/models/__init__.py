from .signature import (
    SignatureDispute, SignatureEvent, SignatureStatus, TargetType, IMMUTABLE_FIELDS
)

__all__ = ['SignatureDispute', 'SignatureEvent', 'SignatureStatus', 'TargetType', 'IMMUTABLE_FIELDS']

# SignatureEvent.request resolves against this mapper
from modules.signature_requests.models.signature_request import SignatureRequest  # noqa: E402,F401
