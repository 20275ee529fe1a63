# modules/pins/controllers/pin_controller.py
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from database import get_db
from modules.common.errors import SignatureServiceError, to_http_exception
from modules.pins.schemas.pin_schemas import PinCredentialResponse, SetPinRequest, VerifyPinRequest
from modules.pins.services.pin_service import PinService

router = APIRouter()


def get_pin_service(db: Session = Depends(get_db)) -> PinService:
    return PinService(db)


@router.put(
    "/{identity_id}",
    response_model=PinCredentialResponse,
    summary="Configurar o cambiar el PIN de una identidad"
)
def set_pin(
    identity_id: str,
    payload: SetPinRequest,
    service: PinService = Depends(get_pin_service)
):
    try:
        return service.set_pin(identity_id, payload.pin, payload.current_pin)
    except SignatureServiceError as e:
        raise to_http_exception(e)


@router.post(
    "/{identity_id}/verify",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Verificar el PIN de una identidad"
)
def verify_pin(
    identity_id: str,
    payload: VerifyPinRequest,
    service: PinService = Depends(get_pin_service)
):
    try:
        service.verify_pin(identity_id, payload.pin)
    except SignatureServiceError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
