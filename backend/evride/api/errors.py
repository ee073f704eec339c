from fastapi import HTTPException, status

from ..services.errors import ErrorKind, ServiceError

STATUS_BY_KIND = {
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.forbidden: status.HTTP_403_FORBIDDEN,
    ErrorKind.invalid_state: status.HTTP_409_CONFLICT,
    ErrorKind.conflicting_reservation: status.HTTP_409_CONFLICT,
    ErrorKind.already_rated: status.HTTP_409_CONFLICT,
    ErrorKind.validation_error: status.HTTP_400_BAD_REQUEST,
    ErrorKind.insufficient_battery: status.HTTP_400_BAD_REQUEST,
    ErrorKind.insufficient_funds: status.HTTP_402_PAYMENT_REQUIRED,
}


def raise_for_error(error: ServiceError) -> None:
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST),
        detail={"error": error.kind.value, "message": error.message},
    )
