import re
import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import validates

from database import Base
from modules.common.clock import utcnow

_RUT_NOISE = re.compile(r"[.\s-]")


def normalize_rut(rut: str) -> str:
    """'12.345.678-k' -> '12345678-K'"""
    cleaned = _RUT_NOISE.sub("", rut or "").upper()
    if len(cleaned) < 2:
        return cleaned
    return f"{cleaned[:-1]}-{cleaned[-1]}"


class Identity(Base):
    """Worker or user as seen by the signing core (owned by the directory)"""
    __tablename__ = 'identities'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    rut = Column(String(16), unique=True, nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    @validates("rut")
    def _normalize(self, key, value):
        return normalize_rut(value)
