from .signature_request import (
    REQUEST_TYPE_LABELS, RequestStatus, RequestType, RequiredSigner, SignatureRequest
)

__all__ = ['REQUEST_TYPE_LABELS', 'RequestStatus', 'RequestType', 'RequiredSigner', 'SignatureRequest']

# SignatureRequest.signatures resolves against this mapper
from modules.signatures.models.signature import SignatureEvent  # noqa: E402,F401
