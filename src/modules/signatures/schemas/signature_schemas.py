from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from modules.signatures.models.signature import SignatureStatus, TargetType


class CreateSignatureRequest(BaseModel):
    identity_id: str
    pin: str
    target_type: TargetType
    target_id: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class EnrollRequest(BaseModel):
    identity_id: str
    pin: str
    metadata: Optional[Dict[str, Any]] = None


class DisputeRequest(BaseModel):
    reason: str = Field(min_length=1)
    reported_by: str = Field(min_length=1)


class ResolveRequest(BaseModel):
    resolution: str = Field(min_length=1)
    resolved_by: str = Field(min_length=1)
    new_status: SignatureStatus


class DisputeInfoResponse(BaseModel):
    reason: str
    reported_by: str
    reported_at: datetime
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    outcome: Optional[SignatureStatus] = None

    model_config = {"from_attributes": True}


class IdentitySnapshotResponse(BaseModel):
    name: str
    rut: str


class SignatureResponse(BaseModel):
    id: str
    token: str
    identity_id: str
    identity_snapshot: IdentitySnapshotResponse
    target_type: TargetType
    target_id: str
    request_id: Optional[str] = None
    created_at: datetime
    validation_method: str
    status: SignatureStatus
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    dispute_info: Optional[DisputeInfoResponse] = None

    @classmethod
    def from_event(cls, signature) -> "SignatureResponse":
        dispute = signature.dispute_info
        return cls(
            id=signature.id,
            token=signature.token,
            identity_id=signature.identity_id,
            identity_snapshot=IdentitySnapshotResponse(
                name=signature.identity_name, rut=signature.identity_rut
            ),
            target_type=signature.target_type,
            target_id=signature.target_id,
            request_id=signature.request_id,
            created_at=signature.created_at,
            validation_method=signature.validation_method,
            status=signature.status,
            ip_address=signature.ip_address,
            user_agent=signature.user_agent,
            metadata=signature.extra,
            dispute_info=DisputeInfoResponse.model_validate(dispute) if dispute else None
        )


class SignatureListResponse(BaseModel):
    signatures: List[SignatureResponse]
    total: int


class TokenVerificationResponse(BaseModel):
    verified: bool
    signature: SignatureResponse
