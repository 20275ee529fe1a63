from fastapi import HTTPException, status


class SignatureServiceError(Exception):
    """Base exception for the signature integrity service"""
    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SignatureServiceError):
    """Referenced identity, credential, signature or request is absent"""
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidCredentialError(SignatureServiceError):
    """PIN mismatch"""
    kind = "invalid_credential"
    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidInputError(SignatureServiceError):
    kind = "invalid_input"
    status_code = 422


class InvalidStateError(SignatureServiceError):
    """Operation not valid for the current lifecycle state"""
    kind = "invalid_state"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(SignatureServiceError):
    """Concurrent state mutation detected"""
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


def to_http_exception(exc: SignatureServiceError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={"kind": exc.kind, "message": exc.message}
    )
