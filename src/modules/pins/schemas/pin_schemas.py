from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SetPinRequest(BaseModel):
    pin: str
    current_pin: Optional[str] = None


class VerifyPinRequest(BaseModel):
    pin: str


class PinCredentialResponse(BaseModel):
    identity_id: str
    created_at: datetime

    model_config = {"from_attributes": True}
