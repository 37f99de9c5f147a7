from typing import NoReturn

from fastapi import HTTPException, status

from chatqueue.services.errors import (
    NotAssignedOperatorError,
    OutboundDeliveryError,
    SessionTransitionError,
)

SERVICE_ERRORS = (LookupError, ValueError, OutboundDeliveryError)


def raise_for_service_error(exc: Exception) -> NoReturn:
    if isinstance(exc, LookupError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, NotAssignedOperatorError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, SessionTransitionError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"reason": exc.reason, "message": str(exc)},
        ) from exc
    if isinstance(exc, OutboundDeliveryError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(exc), "gateway_detail": exc.detail},
        ) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    raise exc
