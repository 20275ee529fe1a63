from .signature_schemas import (
    CreateSignatureRequest, DisputeInfoResponse, DisputeRequest, EnrollRequest,
    ResolveRequest, SignatureListResponse, SignatureResponse, TokenVerificationResponse
)

__all__ = [
    'CreateSignatureRequest', 'DisputeInfoResponse', 'DisputeRequest', 'EnrollRequest',
    'ResolveRequest', 'SignatureListResponse', 'SignatureResponse', 'TokenVerificationResponse'
]
