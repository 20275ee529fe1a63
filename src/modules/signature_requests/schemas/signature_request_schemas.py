from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from modules.signature_requests.models.signature_request import RequestStatus, RequestType
from modules.signatures.schemas.signature_schemas import SignatureResponse


class CreateSignatureRequestPayload(BaseModel):
    required_signer_ids: List[str]
    request_type: RequestType = RequestType.OTRO
    title: Optional[str] = None
    description: Optional[str] = None
    requester_id: Optional[str] = None
    location: Optional[str] = None
    deadline: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class OfflineSignaturePayload(BaseModel):
    rut: str
    pin: str
    name: Optional[str] = None
    signed_at: Optional[datetime] = None


class OfflineBatchPayload(BaseModel):
    signatures: List[OfflineSignaturePayload] = Field(min_length=1)
    request_type: RequestType = RequestType.OTRO
    title: Optional[str] = None
    description: Optional[str] = None
    requester_id: Optional[str] = None
    location: Optional[str] = None


class SignatureRequestResponse(BaseModel):
    id: str
    request_type: RequestType
    title: str
    description: Optional[str] = None
    requester_id: Optional[str] = None
    location: Optional[str] = None
    status: RequestStatus
    required_signer_ids: List[str]
    signed_signer_ids: List[str]
    pending_signer_ids: List[str]
    total_required: int
    total_signed: int
    deadline: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot) -> "SignatureRequestResponse":
        request = snapshot.request
        return cls(
            id=request.id,
            request_type=request.request_type,
            title=request.title,
            description=request.description,
            requester_id=request.requester_id,
            location=request.location,
            status=snapshot.status,
            required_signer_ids=snapshot.required_signer_ids,
            signed_signer_ids=snapshot.signed_signer_ids,
            pending_signer_ids=snapshot.pending_signer_ids,
            total_required=len(snapshot.required_signer_ids),
            total_signed=len(snapshot.signed_signer_ids),
            deadline=request.deadline,
            cancel_reason=request.cancel_reason,
            created_at=request.created_at,
            updated_at=request.updated_at,
            completed_at=request.completed_at
        )


class RequestListResponse(BaseModel):
    requests: List[SignatureRequestResponse]
    total: int


class HistoryEntryResponse(BaseModel):
    signature: SignatureResponse
    request: Optional[SignatureRequestResponse] = None


class HistoryResponse(BaseModel):
    history: List[HistoryEntryResponse]
    total: int


class RequestTypeResponse(BaseModel):
    code: RequestType
    label: str


class OfflineEntryResponse(BaseModel):
    rut: str
    success: bool
    signature_id: Optional[str] = None
    token: Optional[str] = None
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class OfflineBatchResponse(BaseModel):
    request: Optional[SignatureRequestResponse] = None
    valid_count: int
    invalid_count: int
    results: List[OfflineEntryResponse]

    @classmethod
    def from_batch(cls, batch) -> "OfflineBatchResponse":
        return cls(
            request=SignatureRequestResponse.from_snapshot(batch.request) if batch.request else None,
            valid_count=batch.valid_count,
            invalid_count=batch.invalid_count,
            results=[OfflineEntryResponse.model_validate(r) for r in batch.results]
        )
