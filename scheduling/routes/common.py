from functools import lru_cache

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from scheduling.core.config import load_scheduling_config
from scheduling.core.errors import (
    InvalidInput,
    InvalidTransition,
    NotFound,
    PartialFailure,
    SchedulingError,
    SlotUnavailable,
    StoreUnavailable,
    UpstreamTimeout,
)
from scheduling.database import SessionLocal, ensure_scheduling_schema
from scheduling.services.scheduling_engine import SchedulingEngine

ERROR_STATUS_CODES = (
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (SlotUnavailable, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (UpstreamTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (StoreUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


@lru_cache
def get_scheduling_engine() -> SchedulingEngine:
    return SchedulingEngine(SessionLocal, load_scheduling_config())


async def ensure_database_ready() -> None:
    try:
        await ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def error_status_code(error: SchedulingError) -> int:
    if isinstance(error, PartialFailure):
        if isinstance(error.cause, SlotUnavailable):
            return status.HTTP_409_CONFLICT
        return status.HTTP_500_INTERNAL_SERVER_ERROR

    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: SchedulingError) -> HTTPException:
    return HTTPException(status_code=error_status_code(error), detail=error.to_dict())
