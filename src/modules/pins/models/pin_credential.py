from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from database import Base
from modules.common.clock import utcnow


class PinCredential(Base):
    __tablename__ = 'pin_credentials'

    id = Column(Integer, primary_key=True)
    identity_id = Column(String(36), ForeignKey('identities.id'), nullable=False, index=True)
    pin_hash = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    # Set when a newer PIN replaces this one; the active credential has None
    superseded_at = Column(DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None
