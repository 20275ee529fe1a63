import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from config import settings
from modules.common.clock import utcnow
from modules.common.errors import (
    ConflictError, InvalidInputError, InvalidStateError, NotFoundError, SignatureServiceError
)
from modules.identities.services.identity_directory import (
    IdentityDirectory, IdentityInfo, SqlIdentityDirectory
)
from modules.pins.services.pin_service import PinService
from modules.signature_requests.models.signature_request import SignatureRequest
from modules.signature_requests.services.request_tracker import RequestTracker
from modules.signatures.models.signature import (
    SignatureDispute, SignatureEvent, SignatureStatus, TargetType
)
from modules.signatures.services.token import generate_signature_token, token_checksum_matches

logger = logging.getLogger(__name__)


class SignatureLedger:
    """
    Append-only record of PIN-authorized signing events.

    Events are never deleted; after creation only their status moves
    (valida -> disputada -> valida | revocada) and dispute rows are added.
    """

    def __init__(
        self,
        db_session: Session,
        pins: Optional[PinService] = None,
        directory: Optional[IdentityDirectory] = None,
        tracker: Optional[RequestTracker] = None,
        token_secret: Optional[str] = None
    ):
        self.db = db_session
        self.directory = directory or SqlIdentityDirectory(db_session)
        self.pins = pins or PinService(db_session, directory=self.directory)
        self.tracker = tracker or RequestTracker(db_session, directory=self.directory)
        self.token_secret = token_secret or settings.signature_token_secret

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def create_signature(
        self,
        identity_id: str,
        pin: str,
        target_type: TargetType,
        target_id: Optional[str] = None,
        request_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> SignatureEvent:
        try:
            target_type = TargetType(target_type)
        except ValueError:
            raise InvalidInputError(f"Tipo de objetivo inválido: {target_type}")

        if target_type == TargetType.REQUEST:
            request_id = request_id or target_id
            target_id = target_id or request_id
            if target_id != request_id:
                raise InvalidInputError("target_id y request_id deben coincidir para una solicitud")
        if target_type == TargetType.ENROLLMENT:
            target_id = target_id or identity_id
        if not target_id:
            raise InvalidInputError("Falta el identificador del objetivo a firmar")

        identity = self.directory.get_identity(identity_id)
        if target_type != TargetType.ENROLLMENT and not identity.enabled:
            raise InvalidStateError("La identidad no está habilitada. Debe completar el enrolamiento primero")

        # Failed attempts leave no trace in the ledger
        self.pins.verify_pin(identity_id, pin)

        try:
            if target_type == TargetType.ENROLLMENT:
                self._ensure_not_enrolled(identity_id)
            signature = self._append(
                identity, target_type, target_id, request_id, "pin",
                ip_address, user_agent, metadata, now
            )
            self.db.commit()
        except SignatureServiceError:
            # append and recompute share this transaction; a failed recompute drops the signature too
            self.db.rollback()
            raise

        self.db.refresh(signature)
        logger.info("Firma %s registrada: identidad %s sobre %s/%s",
                    signature.id, identity_id, target_type.value, target_id)
        return signature

    def enroll(
        self,
        identity_id: str,
        pin: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> SignatureEvent:
        """
        Enrollment signature. Sets the initial PIN when the identity has
        none; otherwise the given PIN must match the stored one.
        """
        identity = self.directory.get_identity(identity_id)

        try:
            self._ensure_not_enrolled(identity_id)
            if self.pins.has_pin(identity_id):
                self.pins.verify_pin(identity_id, pin)
                method = "pin"
            else:
                self.pins.set_pin(identity_id, pin, commit=False)
                method = "pin_inicial"
            signature = self._append(
                identity, TargetType.ENROLLMENT, identity_id, None, method,
                ip_address, user_agent, metadata, now
            )
            self.db.commit()
        except SignatureServiceError:
            # append and recompute share this transaction; a failed recompute drops the signature too
            self.db.rollback()
            raise

        self.db.refresh(signature)
        logger.info("Firma de enrolamiento %s registrada para identidad %s", signature.id, identity_id)
        return signature

    def _ensure_not_enrolled(self, identity_id: str) -> None:
        existing = (
            self.db.query(SignatureEvent)
            .filter(
                SignatureEvent.identity_id == identity_id,
                SignatureEvent.target_type == TargetType.ENROLLMENT,
                SignatureEvent.status != SignatureStatus.REVOKED
            )
            .first()
        )
        if existing is not None:
            raise InvalidStateError("Esta identidad ya completó su enrolamiento")

    def _append(
        self,
        identity: IdentityInfo,
        target_type: TargetType,
        target_id: str,
        request_id: Optional[str],
        method: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        metadata: Optional[Dict[str, Any]],
        now: Optional[datetime]
    ) -> SignatureEvent:
        now = now or utcnow()

        request = None
        if request_id:
            request = self.tracker.get_request(request_id, lock=True)
            self._check_request_accepts(request, identity.id)

        signature = SignatureEvent(
            token=generate_signature_token(self.token_secret),
            identity_id=identity.id,
            identity_name=identity.name,
            identity_rut=identity.rut,
            target_type=target_type,
            target_id=str(target_id),
            request_id=request_id,
            created_at=now,
            validation_method=method,
            status=SignatureStatus.VALID,
            ip_address=ip_address,
            user_agent=user_agent,
            extra=metadata
        )
        self.db.add(signature)
        self.db.flush()

        if request is not None:
            self.tracker.refresh_state(request, now)
        return signature

    def _check_request_accepts(self, request: SignatureRequest, identity_id: str) -> None:
        if request.cancelled:
            raise InvalidStateError("La solicitud está cancelada")
        if identity_id not in request.required_signer_ids:
            raise InvalidInputError("La identidad no está incluida en esta solicitud de firma")
        if identity_id in self.tracker.signed_signer_ids(request.id):
            raise InvalidStateError("Esta identidad ya firmó la solicitud")

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def dispute(self, signature_id: str, reason: str, reported_by: str,
                now: Optional[datetime] = None) -> SignatureEvent:
        if not reason or not reported_by:
            raise InvalidInputError("Se requieren el motivo y quién reporta la disputa")

        signature = self.get(signature_id)
        if signature.status == SignatureStatus.DISPUTED:
            raise InvalidStateError("Esta firma ya está en disputa")
        if signature.status != SignatureStatus.VALID:
            raise InvalidStateError("Solo las firmas válidas pueden disputarse")

        self._transition(signature_id, SignatureStatus.VALID, SignatureStatus.DISPUTED)
        self.db.add(SignatureDispute(
            signature_id=signature_id,
            reason=reason,
            reported_by=reported_by,
            reported_at=now or utcnow()
        ))
        self.db.commit()
        self.db.refresh(signature)

        logger.info("Firma %s disputada por %s", signature_id, reported_by)
        return signature

    def resolve(self, signature_id: str, resolution: str, resolved_by: str,
                new_status: SignatureStatus, now: Optional[datetime] = None) -> SignatureEvent:
        try:
            new_status = SignatureStatus(new_status)
        except ValueError:
            raise InvalidInputError(f"Estado inválido: {new_status}")
        if new_status not in (SignatureStatus.VALID, SignatureStatus.REVOKED):
            raise InvalidInputError('Estado inválido. Debe ser "valida" o "revocada"')
        if not resolution or not resolved_by:
            raise InvalidInputError("Se requieren la resolución y quién resuelve")

        now = now or utcnow()
        signature = self.get(signature_id)
        if signature.status != SignatureStatus.DISPUTED:
            raise InvalidStateError("Esta firma no está en disputa")

        try:
            request = None
            if signature.request_id and new_status == SignatureStatus.REVOKED:
                request = self.tracker.get_request(signature.request_id, lock=True)

            self._transition(signature_id, SignatureStatus.DISPUTED, new_status)

            open_dispute = (
                self.db.query(SignatureDispute)
                .filter(
                    SignatureDispute.signature_id == signature_id,
                    SignatureDispute.resolved_at.is_(None)
                )
                .order_by(SignatureDispute.id.desc())
                .first()
            )
            if open_dispute is not None:
                open_dispute.resolution = resolution
                open_dispute.resolved_by = resolved_by
                open_dispute.resolved_at = now
                open_dispute.outcome = new_status
            self.db.flush()

            # A revoked signature no longer counts toward completion
            if request is not None:
                self.tracker.refresh_state(request, now)
            self.db.commit()
        except SignatureServiceError:
            # status change and recompute share this transaction; a failed recompute undoes the status change
            self.db.rollback()
            raise

        self.db.refresh(signature)
        logger.info("Disputa de firma %s resuelta: %s", signature_id, new_status.value)
        return signature

    def _transition(self, signature_id: str, expected: SignatureStatus, target: SignatureStatus) -> None:
        """Compare-and-set on status; zero rows means someone else moved it first"""
        updated = (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.id == signature_id, SignatureEvent.status == expected)
            .update({SignatureEvent.status: target}, synchronize_session=False)
        )
        if updated == 0:
            self.db.rollback()
            raise ConflictError("La firma fue modificada concurrentemente")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, signature_id: str) -> SignatureEvent:
        signature = self.db.get(SignatureEvent, signature_id)
        if signature is None:
            raise NotFoundError("Firma no encontrada")
        return signature

    def list_by_identity(self, identity_id: str) -> List[SignatureEvent]:
        return (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.identity_id == identity_id)
            .order_by(SignatureEvent.created_at.desc())
            .all()
        )

    def list_by_request(self, request_id: str) -> List[SignatureEvent]:
        return (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.request_id == request_id)
            .order_by(SignatureEvent.created_at.asc())
            .all()
        )

    def list_disputed(self) -> List[SignatureEvent]:
        disputed = (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.status == SignatureStatus.DISPUTED)
            .all()
        )
        return sorted(disputed, key=lambda s: s.dispute_info.reported_at, reverse=True)

    def verify_by_token(self, token: str) -> SignatureEvent:
        if not token_checksum_matches(token, self.token_secret):
            raise NotFoundError("Firma no encontrada")
        signature = (
            self.db.query(SignatureEvent)
            .filter(SignatureEvent.token == token.upper())
            .first()
        )
        if signature is None:
            raise NotFoundError("Firma no encontrada")
        return signature
