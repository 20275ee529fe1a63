import uuid
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from database import Base
from modules.common.clock import utcnow


class RequestStatus(str, PyEnum):
    PENDING = "pendiente"
    IN_PROGRESS = "en_proceso"
    COMPLETED = "completada"
    CANCELLED = "cancelada"
    EXPIRED = "vencida"


class RequestType(str, PyEnum):
    CHARLA_5MIN = "CHARLA_5MIN"
    CAPACITACION = "CAPACITACION"
    INDUCCION = "INDUCCION"
    ENTREGA_EPP = "ENTREGA_EPP"
    ART = "ART"
    PROCEDIMIENTO = "PROCEDIMIENTO"
    INSPECCION = "INSPECCION"
    REGLAMENTO = "REGLAMENTO"
    OTRO = "OTRO"


REQUEST_TYPE_LABELS = {
    RequestType.CHARLA_5MIN: "Charla de 5 Minutos",
    RequestType.CAPACITACION: "Capacitación",
    RequestType.INDUCCION: "Inducción",
    RequestType.ENTREGA_EPP: "Entrega de EPP",
    RequestType.ART: "Análisis de Riesgos en Terreno",
    RequestType.PROCEDIMIENTO: "Procedimiento de Trabajo",
    RequestType.INSPECCION: "Inspección de Seguridad",
    RequestType.REGLAMENTO: "Reglamento Interno",
    RequestType.OTRO: "Otro",
}


class SignatureRequest(Base):
    __tablename__ = 'signature_requests'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_type = Column(Enum(RequestType), nullable=False, default=RequestType.OTRO)
    title = Column(String(255), nullable=False)
    description = Column(String(2048), nullable=True)
    requester_id = Column(String(36), nullable=True, index=True)
    location = Column(String(255), nullable=True)

    deadline = Column(DateTime, nullable=True)
    # Last recomputed state without the deadline; expiry is derived on read
    status = Column(
        Enum(RequestStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RequestStatus.PENDING
    )
    cancelled = Column(Boolean, nullable=False, default=False)
    cancel_reason = Column(String(1024), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)

    signers = relationship(
        "RequiredSigner",
        back_populates="request",
        order_by="RequiredSigner.position",
        cascade="all, delete-orphan"
    )
    signatures = relationship("SignatureEvent", back_populates="request", order_by="SignatureEvent.created_at")

    @property
    def required_signer_ids(self) -> list:
        return [signer.identity_id for signer in self.signers]


class RequiredSigner(Base):
    __tablename__ = 'signature_request_signers'

    request_id = Column(String(36), ForeignKey('signature_requests.id'), primary_key=True)
    identity_id = Column(String(36), primary_key=True, index=True)
    position = Column(Integer, nullable=False)

    request = relationship("SignatureRequest", back_populates="signers")
