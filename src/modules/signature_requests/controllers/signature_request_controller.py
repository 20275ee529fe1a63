# modules/signature_requests/controllers/signature_request_controller.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from database import get_db
from modules.common.errors import SignatureServiceError, to_http_exception
from modules.signature_requests.models.signature_request import (
    REQUEST_TYPE_LABELS, RequestStatus, RequestType
)
from modules.signature_requests.schemas.signature_request_schemas import (
    CancelRequest, CreateSignatureRequestPayload, HistoryEntryResponse, HistoryResponse,
    OfflineBatchPayload, OfflineBatchResponse, RequestListResponse, RequestTypeResponse,
    SignatureRequestResponse
)
from modules.signature_requests.services.request_tracker import OfflineEntry, RequestTracker
from modules.signatures.schemas.signature_schemas import SignatureResponse

router = APIRouter()


def get_tracker(db: Session = Depends(get_db)) -> RequestTracker:
    return RequestTracker(db)


def _listing(snapshots) -> RequestListResponse:
    return RequestListResponse(
        requests=[SignatureRequestResponse.from_snapshot(s) for s in snapshots],
        total=len(snapshots)
    )


@router.post(
    "",
    response_model=SignatureRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Crear solicitud de firmas"
)
def create_request(
    payload: CreateSignatureRequestPayload,
    tracker: RequestTracker = Depends(get_tracker)
):
    try:
        request = tracker.create_request(
            payload.required_signer_ids,
            deadline=payload.deadline,
            title=payload.title,
            request_type=payload.request_type,
            description=payload.description,
            requester_id=payload.requester_id,
            location=payload.location
        )
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureRequestResponse.from_snapshot(tracker.snapshot(request))


@router.get("", response_model=RequestListResponse, summary="Listar solicitudes de firma")
def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status", description="Filtrar por estado"),
    requester_id: Optional[str] = Query(None, description="Filtrar por solicitante"),
    request_type: Optional[RequestType] = Query(None, description="Filtrar por tipo"),
    tracker: RequestTracker = Depends(get_tracker)
):
    return _listing(tracker.list_requests(status_filter, requester_id, request_type))


@router.post(
    "/offline-batch",
    response_model=OfflineBatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Sincronizar firmas capturadas sin conexión"
)
def process_offline_batch(
    payload: OfflineBatchPayload,
    request: Request,
    tracker: RequestTracker = Depends(get_tracker)
):
    """Crea una solicitud con los firmantes válidos; los rechazos se informan por entrada"""
    entries = [OfflineEntry(rut=s.rut, pin=s.pin, signed_at=s.signed_at) for s in payload.signatures]
    try:
        batch = tracker.process_offline_batch(
            entries,
            request_type=payload.request_type,
            title=payload.title,
            description=payload.description,
            requester_id=payload.requester_id,
            location=payload.location,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent")
        )
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return OfflineBatchResponse.from_batch(batch)


@router.get("/types", response_model=List[RequestTypeResponse])
def list_request_types():
    return [RequestTypeResponse(code=code, label=label) for code, label in REQUEST_TYPE_LABELS.items()]


@router.get("/pending/{identity_id}", response_model=RequestListResponse)
def get_pending(identity_id: str, tracker: RequestTracker = Depends(get_tracker)):
    """Solicitudes que la identidad aún debe firmar"""
    return _listing(tracker.get_pending(identity_id))


@router.get("/history/{identity_id}", response_model=HistoryResponse)
def get_history(identity_id: str, tracker: RequestTracker = Depends(get_tracker)):
    entries = tracker.get_history(identity_id)
    return HistoryResponse(
        history=[
            HistoryEntryResponse(
                signature=SignatureResponse.from_event(entry.signature),
                request=SignatureRequestResponse.from_snapshot(entry.request) if entry.request else None
            )
            for entry in entries
        ],
        total=len(entries)
    )


@router.get("/{request_id}", response_model=SignatureRequestResponse)
def get_request(request_id: str, tracker: RequestTracker = Depends(get_tracker)):
    try:
        return SignatureRequestResponse.from_snapshot(tracker.get(request_id))
    except SignatureServiceError as e:
        raise to_http_exception(e)


@router.post("/{request_id}/cancel", response_model=SignatureRequestResponse)
def cancel_request(
    request_id: str,
    payload: Optional[CancelRequest] = None,
    tracker: RequestTracker = Depends(get_tracker)
):
    try:
        snapshot = tracker.cancel(request_id, payload.reason if payload else None)
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureRequestResponse.from_snapshot(snapshot)


@router.post("/{request_id}/recompute", response_model=SignatureRequestResponse)
def recompute_request(request_id: str, tracker: RequestTracker = Depends(get_tracker)):
    """Recalcula el estado agregado (reparación manual)"""
    try:
        snapshot = tracker.recompute_state(request_id)
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return SignatureRequestResponse.from_snapshot(snapshot)
