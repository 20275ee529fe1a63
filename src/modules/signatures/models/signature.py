# src/modules/signatures/models/signature.py
import uuid
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String, event, inspect
from sqlalchemy.orm import relationship

from database import Base
from modules.common.clock import utcnow
from modules.common.errors import InvalidStateError


class SignatureStatus(str, PyEnum):
    VALID = "valida"
    DISPUTED = "disputada"
    REVOKED = "revocada"


class TargetType(str, PyEnum):
    ENROLLMENT = "enrollment"
    DOCUMENT = "document"
    ACTIVITY = "activity"
    REQUEST = "request"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Written once at signing time; only `status` and the dispute rows change afterwards
IMMUTABLE_FIELDS = (
    "id", "token", "identity_id", "identity_name", "identity_rut",
    "target_type", "target_id", "request_id", "created_at", "validation_method",
)


class SignatureEvent(Base):
    __tablename__ = "signature_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    token = Column(String(64), unique=True, nullable=False)

    # No FK to identities: the snapshot must outlive the directory record
    identity_id = Column(String(36), nullable=False, index=True)
    identity_name = Column(String, nullable=False)
    identity_rut = Column(String(16), nullable=False)

    target_type = Column(Enum(TargetType, values_callable=_enum_values), nullable=False)
    target_id = Column(String(64), nullable=False)
    request_id = Column(String(36), ForeignKey("signature_requests.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    validation_method = Column(String(32), nullable=False, default="pin")
    status = Column(
        Enum(SignatureStatus, values_callable=_enum_values),
        nullable=False,
        default=SignatureStatus.VALID
    )

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    extra = Column("metadata", JSON, nullable=True)

    request = relationship("SignatureRequest", back_populates="signatures")
    disputes = relationship(
        "SignatureDispute",
        back_populates="signature",
        order_by="SignatureDispute.id"
    )

    @property
    def dispute_info(self):
        return self.disputes[-1] if self.disputes else None


class SignatureDispute(Base):
    __tablename__ = "signature_disputes"

    id = Column(Integer, primary_key=True)
    signature_id = Column(String(36), ForeignKey("signature_events.id"), nullable=False, index=True)
    reason = Column(String(1024), nullable=False)
    reported_by = Column(String(64), nullable=False)
    reported_at = Column(DateTime, default=utcnow, nullable=False)
    resolution = Column(String(1024), nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    outcome = Column(Enum(SignatureStatus, values_callable=_enum_values), nullable=True)

    signature = relationship("SignatureEvent", back_populates="disputes")


@event.listens_for(SignatureEvent, "before_update")
def _reject_core_rewrite(mapper, connection, target):
    state = inspect(target)
    changed = [name for name in IMMUTABLE_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise InvalidStateError(f"Campos inmutables de la firma modificados: {', '.join(changed)}")


@event.listens_for(SignatureEvent, "before_delete")
def _reject_delete(mapper, connection, target):
    raise InvalidStateError("Las firmas no se eliminan")
