# src/modules/signatures/controllers/signature_controller.py
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from modules.common.errors import SignatureServiceError, to_http_exception
from modules.signatures.schemas.signature_schemas import (
    CreateSignatureRequest, DisputeRequest, EnrollRequest, ResolveRequest,
    SignatureListResponse, SignatureResponse, TokenVerificationResponse
)
from modules.signatures.services.signature_service import SignatureLedger

router = APIRouter()

def get_ledger(db: Session = Depends(get_db)) -> SignatureLedger:
    return SignatureLedger(db)

def _client_info(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")

def _listing(signatures) -> SignatureListResponse:
    return SignatureListResponse(
        signatures=[SignatureResponse.from_event(s) for s in signatures],
        total=len(signatures)
    )

@router.post("", response_model=SignatureResponse, status_code=status.HTTP_201_CREATED)
def create_signature(
    payload: CreateSignatureRequest,
    request: Request,
    ledger: SignatureLedger = Depends(get_ledger)
):
    """Firma con validación de PIN"""
    ip_address, user_agent = _client_info(request)
    try:
        signature = ledger.create_signature(
            identity_id=payload.identity_id,
            pin=payload.pin,
            target_type=payload.target_type,
            target_id=payload.target_id,
            request_id=payload.request_id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata=payload.metadata
        )
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureResponse.from_event(signature)

@router.post("/enroll", response_model=SignatureResponse, status_code=status.HTTP_201_CREATED)
def enroll(
    payload: EnrollRequest,
    request: Request,
    ledger: SignatureLedger = Depends(get_ledger)
):
    """Firma de enrolamiento (configura el PIN inicial si no existe)"""
    ip_address, user_agent = _client_info(request)
    try:
        signature = ledger.enroll(
            payload.identity_id, payload.pin,
            ip_address=ip_address, user_agent=user_agent, metadata=payload.metadata
        )
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureResponse.from_event(signature)

@router.get("/disputes", response_model=SignatureListResponse)
def list_disputes(ledger: SignatureLedger = Depends(get_ledger)):
    return _listing(ledger.list_disputed())

@router.get("/identity/{identity_id}", response_model=SignatureListResponse)
def list_by_identity(identity_id: str, ledger: SignatureLedger = Depends(get_ledger)):
    return _listing(ledger.list_by_identity(identity_id))

@router.get("/request/{request_id}", response_model=SignatureListResponse)
def list_by_request(request_id: str, ledger: SignatureLedger = Depends(get_ledger)):
    return _listing(ledger.list_by_request(request_id))

@router.get("/verify/{token}", response_model=TokenVerificationResponse)
def verify_by_token(token: str, ledger: SignatureLedger = Depends(get_ledger)):
    """Verificación de firma por token (auditoría)"""
    try:
        signature = ledger.verify_by_token(token)
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return TokenVerificationResponse(verified=True, signature=SignatureResponse.from_event(signature))

@router.get("/{signature_id}", response_model=SignatureResponse)
def get_signature(signature_id: str, ledger: SignatureLedger = Depends(get_ledger)):
    try:
        return SignatureResponse.from_event(ledger.get(signature_id))
    except SignatureServiceError as e:
        raise to_http_exception(e)

@router.post("/{signature_id}/dispute", response_model=SignatureResponse)
def dispute_signature(
    signature_id: str,
    payload: DisputeRequest,
    ledger: SignatureLedger = Depends(get_ledger)
):
    """Reportar un problema con una firma"""
    try:
        signature = ledger.dispute(signature_id, payload.reason, payload.reported_by)
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureResponse.from_event(signature)

@router.put("/{signature_id}/resolve", response_model=SignatureResponse)
def resolve_dispute(
    signature_id: str,
    payload: ResolveRequest,
    ledger: SignatureLedger = Depends(get_ledger)
):
    try:
        signature = ledger.resolve(
            signature_id, payload.resolution, payload.resolved_by, payload.new_status
        )
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureResponse.from_event(signature)
