import logging
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from config import settings
from modules.common.clock import utcnow
from modules.common.errors import InvalidCredentialError, InvalidInputError, NotFoundError
from modules.identities.services.identity_directory import IdentityDirectory, SqlIdentityDirectory
from modules.pins.models.pin_credential import PinCredential

logger = logging.getLogger(__name__)

pin_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.pin_hash_rounds
)

TRIVIAL_PINS = {
    '0000', '1111', '2222', '3333', '4444',
    '5555', '6666', '7777', '8888', '9999',
    '1234', '4321',
}


def validate_pin(pin, reject_trivial: bool = True) -> None:
    """Raises InvalidInputError unless `pin` is exactly four ASCII digits"""
    if not isinstance(pin, str) or len(pin) != 4 or not all(c in "0123456789" for c in pin):
        raise InvalidInputError("El PIN debe tener exactamente 4 dígitos numéricos")
    if reject_trivial and pin in TRIVIAL_PINS:
        raise InvalidInputError("PIN demasiado simple, elija otro")


class PinService:

    def __init__(
        self,
        db_session: Session,
        directory: Optional[IdentityDirectory] = None,
        context: CryptContext = pin_context,
        require_current_pin: Optional[bool] = None,
        reject_trivial: Optional[bool] = None
    ):
        self.db = db_session
        self.directory = directory or SqlIdentityDirectory(db_session)
        self.context = context
        self.require_current_pin = (
            settings.require_current_pin_on_change if require_current_pin is None else require_current_pin
        )
        self.reject_trivial = settings.reject_trivial_pins if reject_trivial is None else reject_trivial

    def _active_credential(self, identity_id: str, lock: bool = False) -> Optional[PinCredential]:
        query = self.db.query(PinCredential).filter(
            PinCredential.identity_id == identity_id,
            PinCredential.superseded_at.is_(None)
        )
        if lock:
            query = query.with_for_update()
        return query.order_by(PinCredential.created_at.desc(), PinCredential.id.desc()).first()

    def has_pin(self, identity_id: str) -> bool:
        return self._active_credential(identity_id) is not None

    def set_pin(self, identity_id: str, new_pin: str, current_pin: Optional[str] = None,
                commit: bool = True) -> PinCredential:
        """
        Stores a new PIN hash for the identity, superseding the active one.
        If a credential exists and policy demands it, `current_pin` must match.
        """
        validate_pin(new_pin, self.reject_trivial)
        self.directory.get_identity(identity_id)

        existing = self._active_credential(identity_id, lock=True)
        if existing is not None and (self.require_current_pin or current_pin is not None):
            if current_pin is None:
                raise InvalidCredentialError("Se requiere el PIN actual para cambiar el PIN")
            if not self.context.verify(current_pin, existing.pin_hash):
                raise InvalidCredentialError("PIN actual incorrecto")

        now = utcnow()
        if existing is not None:
            existing.superseded_at = now

        credential = PinCredential(
            identity_id=identity_id,
            pin_hash=self.context.hash(new_pin),
            created_at=now
        )
        self.db.add(credential)
        if commit:
            self.db.commit()
            self.db.refresh(credential)
        else:
            self.db.flush()

        logger.info("PIN %s para identidad %s",
                    "actualizado" if existing is not None else "configurado", identity_id)
        return credential

    def verify_pin(self, identity_id: str, pin: str) -> None:
        """Returns None on success; raises NotFoundError or InvalidCredentialError"""
        credential = self._active_credential(identity_id)
        if credential is None:
            self.context.dummy_verify()
            raise NotFoundError("La identidad no tiene PIN configurado")

        if not isinstance(pin, str):
            self.context.dummy_verify()
            logger.warning("PIN incorrecto para identidad %s", identity_id)
            raise InvalidCredentialError("PIN incorrecto")
        if not self.context.verify(pin, credential.pin_hash):
            logger.warning("PIN incorrecto para identidad %s", identity_id)
            raise InvalidCredentialError("PIN incorrecto")
