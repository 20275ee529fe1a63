from .signature_request_schemas import (
    CancelRequest, CreateSignatureRequestPayload, HistoryEntryResponse, HistoryResponse,
    RequestListResponse, RequestTypeResponse, SignatureRequestResponse
)

__all__ = [
    'CancelRequest', 'CreateSignatureRequestPayload', 'HistoryEntryResponse', 'HistoryResponse',
    'RequestListResponse', 'RequestTypeResponse', 'SignatureRequestResponse'
]
