"""
FastAPI dependencies (DB session, error translation)
"""
from fastapi import HTTPException, status

from clientbilling.infrastructure.db.session import get_db as _get_db
from clientbilling.domain.errors import (
    BillingConflictError,
    BillingError,
    BillingNotFoundError,
    BillingPersistenceError,
    BillingValidationError,
)


# Re-export get_db for routers and test overrides
get_db = _get_db


_STATUS_BY_ERROR = (
    (BillingNotFoundError, status.HTTP_404_NOT_FOUND),
    (BillingValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (BillingConflictError, status.HTTP_409_CONFLICT),
    (BillingPersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: BillingError) -> HTTPException:
    """
    Translate a billing error into an HTTPException

    Usage:
        try:
            ...
        except BillingError as e:
            raise http_error(e)
    """
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
