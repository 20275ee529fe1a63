import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from modules.common.clock import as_naive_utc, utcnow
from modules.common.errors import (
    InvalidInputError, InvalidStateError, NotFoundError, SignatureServiceError
)
from modules.identities.services.identity_directory import IdentityDirectory, SqlIdentityDirectory
from modules.signature_requests.models.signature_request import (
    REQUEST_TYPE_LABELS, RequestStatus, RequestType, RequiredSigner, SignatureRequest
)
from modules.signatures.models.signature import SignatureEvent, SignatureStatus, TargetType

logger = logging.getLogger(__name__)


def derive_status(
    required_ids: Iterable[str],
    signed_ids: Iterable[str],
    deadline: Optional[datetime],
    cancelled: bool,
    now: Optional[datetime] = None
) -> RequestStatus:
    """
    Pure status function of a signature request.

    Precedence: cancelled, completed, expired, in progress, pending.
    Completion is checked before expiry so a late but complete request
    reads as completed.
    """
    required = set(required_ids)
    signed = set(signed_ids) & required

    if cancelled:
        return RequestStatus.CANCELLED
    if required and signed >= required:
        return RequestStatus.COMPLETED
    if deadline is not None and now is not None and as_naive_utc(deadline) < as_naive_utc(now):
        return RequestStatus.EXPIRED
    if signed:
        return RequestStatus.IN_PROGRESS
    return RequestStatus.PENDING


@dataclass
class RequestSnapshot:
    """A request together with its aggregate state at a given instant"""
    request: SignatureRequest
    status: RequestStatus
    signed_signer_ids: List[str] = field(default_factory=list)

    @property
    def required_signer_ids(self) -> List[str]:
        return self.request.required_signer_ids

    @property
    def pending_signer_ids(self) -> List[str]:
        signed = set(self.signed_signer_ids)
        return [i for i in self.required_signer_ids if i not in signed]


@dataclass
class HistoryEntry:
    signature: SignatureEvent
    request: Optional[RequestSnapshot] = None


@dataclass
class OfflineEntry:
    """A signature captured on a device without connectivity"""
    rut: str
    pin: str
    signed_at: Optional[datetime] = None


@dataclass
class OfflineEntryResult:
    rut: str
    success: bool = False
    signature_id: Optional[str] = None
    token: Optional[str] = None
    error: Optional[str] = None


@dataclass
class OfflineBatchResult:
    request: Optional[RequestSnapshot]
    results: List[OfflineEntryResult] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return len([r for r in self.results if r.success])

    @property
    def invalid_count(self) -> int:
        return len(self.results) - self.valid_count


class RequestTracker:

    def __init__(self, db_session: Session, directory: Optional[IdentityDirectory] = None):
        self.db = db_session
        self.directory = directory or SqlIdentityDirectory(db_session)

    def create_request(
        self,
        required_signer_ids: Iterable[str],
        deadline: Optional[datetime] = None,
        title: Optional[str] = None,
        request_type: RequestType = RequestType.OTRO,
        description: Optional[str] = None,
        requester_id: Optional[str] = None,
        location: Optional[str] = None
    ) -> SignatureRequest:
        signer_ids = list(dict.fromkeys(required_signer_ids or []))
        if not signer_ids:
            raise InvalidInputError("Debe especificar al menos un firmante")

        try:
            request_type = RequestType(request_type)
        except ValueError:
            raise InvalidInputError(f"Tipo de solicitud inválido: {request_type}")

        for identity_id in signer_ids:
            self.directory.get_identity(identity_id)

        request = SignatureRequest(
            request_type=request_type,
            title=title or REQUEST_TYPE_LABELS[request_type],
            description=description,
            requester_id=requester_id,
            location=location,
            deadline=as_naive_utc(deadline),
            status=RequestStatus.PENDING,
            cancelled=False,
            signers=[
                RequiredSigner(identity_id=identity_id, position=position)
                for position, identity_id in enumerate(signer_ids)
            ]
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)

        logger.info("Solicitud %s creada con %d firmantes", request.id, len(signer_ids))
        return request

    def get_request(self, request_id: str, lock: bool = False) -> SignatureRequest:
        query = self.db.query(SignatureRequest).filter(SignatureRequest.id == request_id)
        if lock:
            # Per-request serialization point for append + recompute
            query = query.with_for_update().populate_existing()
        request = query.first()
        if request is None:
            raise NotFoundError("Solicitud de firma no encontrada")
        return request

    def signed_signer_ids(self, request_id: str) -> List[str]:
        rows = (
            self.db.query(SignatureEvent.identity_id)
            .filter(
                SignatureEvent.request_id == request_id,
                SignatureEvent.status != SignatureStatus.REVOKED
            )
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def snapshot(self, request: SignatureRequest, now: Optional[datetime] = None) -> RequestSnapshot:
        signed = self.signed_signer_ids(request.id)
        status = derive_status(
            request.required_signer_ids, signed, request.deadline, request.cancelled, now or utcnow()
        )
        return RequestSnapshot(request=request, status=status, signed_signer_ids=signed)

    def get(self, request_id: str, now: Optional[datetime] = None) -> RequestSnapshot:
        return self.snapshot(self.get_request(request_id), now)

    def refresh_state(self, request: SignatureRequest, now: Optional[datetime] = None) -> RequestSnapshot:
        """
        Recomputes and stores the aggregate state inside the caller's
        transaction. Pending writes must already be flushed.
        """
        now = now or utcnow()
        signed = self.signed_signer_ids(request.id)
        stored = derive_status(request.required_signer_ids, signed, None, request.cancelled)

        if request.status != stored:
            logger.info("Solicitud %s: %s -> %s", request.id, request.status.value, stored.value)
        request.status = stored
        if stored == RequestStatus.COMPLETED:
            request.completed_at = request.completed_at or now
        else:
            request.completed_at = None
        request.updated_at = now

        status = derive_status(request.required_signer_ids, signed, request.deadline, request.cancelled, now)
        return RequestSnapshot(request=request, status=status, signed_signer_ids=signed)

    def recompute_state(self, request_id: str, now: Optional[datetime] = None) -> RequestSnapshot:
        request = self.get_request(request_id, lock=True)
        snapshot = self.refresh_state(request, now)
        self.db.commit()
        return snapshot

    def cancel(self, request_id: str, reason: Optional[str] = None,
               now: Optional[datetime] = None) -> RequestSnapshot:
        now = now or utcnow()
        request = self.get_request(request_id, lock=True)
        current = self.snapshot(request, now)

        if current.status == RequestStatus.COMPLETED:
            self.db.rollback()
            raise InvalidStateError("No se puede cancelar una solicitud completada")
        if current.status == RequestStatus.CANCELLED:
            self.db.rollback()
            raise InvalidStateError("La solicitud ya está cancelada")

        request.cancelled = True
        request.cancel_reason = reason or "Cancelada por el solicitante"
        request.cancelled_at = now
        snapshot = self.refresh_state(request, now)
        self.db.commit()

        logger.info("Solicitud %s cancelada", request_id)
        return snapshot

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        requester_id: Optional[str] = None,
        request_type: Optional[RequestType] = None,
        now: Optional[datetime] = None
    ) -> List[RequestSnapshot]:
        query = self.db.query(SignatureRequest)
        if requester_id is not None:
            query = query.filter(SignatureRequest.requester_id == requester_id)
        if request_type is not None:
            query = query.filter(SignatureRequest.request_type == request_type)

        snapshots = [self.snapshot(r, now) for r in query.order_by(SignatureRequest.created_at.desc()).all()]
        if status is not None:
            snapshots = [s for s in snapshots if s.status == status]
        return snapshots

    def get_pending(self, identity_id: str, now: Optional[datetime] = None) -> List[RequestSnapshot]:
        """Open requests where the identity is required and has not signed yet"""
        requests = (
            self.db.query(SignatureRequest)
            .join(RequiredSigner)
            .filter(
                RequiredSigner.identity_id == identity_id,
                SignatureRequest.cancelled.is_(False)
            )
            .order_by(SignatureRequest.created_at.desc())
            .all()
        )
        pending = []
        for request in requests:
            snapshot = self.snapshot(request, now)
            if snapshot.status == RequestStatus.COMPLETED:
                continue
            if identity_id in snapshot.signed_signer_ids:
                continue
            pending.append(snapshot)
        return pending

    def get_history(self, identity_id: str, now: Optional[datetime] = None) -> List[HistoryEntry]:
        signatures = (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.identity_id == identity_id)
            .order_by(SignatureEvent.created_at.desc())
            .all()
        )
        history = []
        for signature in signatures:
            request = self.snapshot(signature.request, now) if signature.request_id else None
            history.append(HistoryEntry(signature=signature, request=request))
        return history

    def process_offline_batch(
        self,
        entries: Iterable[OfflineEntry],
        request_type: RequestType = RequestType.OTRO,
        title: Optional[str] = None,
        description: Optional[str] = None,
        requester_id: Optional[str] = None,
        location: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        ledger=None,
        now: Optional[datetime] = None
    ) -> OfflineBatchResult:
        """
        Registers signatures collected offline as a new request.

        Each entry is checked on its own. An unknown RUT, a disabled
        identity or a wrong PIN is reported for that entry and the others
        still go through. The request lists only the accepted signers, and
        it is created and signed in one transaction under the request lock.
        """
        # the ledger module imports this one
        from modules.signatures.services.signature_service import SignatureLedger

        entries = list(entries or [])
        if not entries:
            raise InvalidInputError("Debe incluir al menos una firma offline")
        try:
            request_type = RequestType(request_type)
        except ValueError:
            raise InvalidInputError(f"Tipo de solicitud inválido: {request_type}")

        now = now or utcnow()
        ledger = ledger or SignatureLedger(self.db, directory=self.directory, tracker=self)

        results = []
        accepted = []
        for entry in entries:
            result = OfflineEntryResult(rut=entry.rut)
            results.append(result)
            try:
                identity = self.directory.find_by_rut(entry.rut)
                if any(identity.id == other.id for other, _, _ in accepted):
                    raise InvalidStateError("Firma duplicada en el lote")
                if not identity.enabled:
                    raise InvalidStateError("Trabajador no habilitado")
                ledger.pins.verify_pin(identity.id, entry.pin)
            except SignatureServiceError as exc:
                logger.warning("Firma offline rechazada para RUT %s: %s", entry.rut, exc.message)
                result.error = exc.message
                continue
            accepted.append((identity, entry, result))

        if not accepted:
            logger.warning("Lote offline sin firmas válidas (%d rechazadas)", len(results))
            return OfflineBatchResult(request=None, results=results)

        request = SignatureRequest(
            request_type=request_type,
            title=title or REQUEST_TYPE_LABELS[request_type],
            description=description,
            requester_id=requester_id,
            location=location,
            status=RequestStatus.PENDING,
            cancelled=False,
            created_at=now,
            signers=[
                RequiredSigner(identity_id=identity.id, position=position)
                for position, (identity, _, _) in enumerate(accepted)
            ]
        )
        try:
            self.db.add(request)
            self.db.flush()
            for identity, entry, result in accepted:
                signature = ledger._append(
                    identity, TargetType.REQUEST, request.id, request.id, "pin_offline",
                    ip_address, user_agent, {"offline": True, "synced_at": now.isoformat()},
                    as_naive_utc(entry.signed_at) or now
                )
                result.success = True
                result.signature_id = signature.id
                result.token = signature.token
            snapshot = self.refresh_state(request, now)
            self.db.commit()
        except SignatureServiceError:
            self.db.rollback()
            raise

        self.db.refresh(request)
        batch = OfflineBatchResult(request=snapshot, results=results)
        logger.info("Lote offline registrado en solicitud %s: %d válidas, %d rechazadas",
                    request.id, batch.valid_count, batch.invalid_count)
        return batch
