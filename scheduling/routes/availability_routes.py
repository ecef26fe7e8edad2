from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

from scheduling.core.errors import SchedulingError
from scheduling.routes.common import ensure_database_ready, get_scheduling_engine, to_http_exception
from scheduling.schemas import (
    AddAvailabilityRequest,
    AddAvailabilityResponse,
    EditAvailabilityRequest,
    ListAvailabilityRequest,
    ListAvailabilityResponse,
    MAX_WINDOW_HOURS,
    SlotResponse,
)
from scheduling.services.scheduling_engine import SchedulingEngine

router = APIRouter(tags=['availability'])


@router.post('/slots', response_model=AddAvailabilityResponse, status_code=status.HTTP_201_CREATED)
async def add_availability(
    data: AddAvailabilityRequest,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.add_availability(data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('/slots', response_model=ListAvailabilityResponse)
async def list_availability(
    therapist_code: str | None = Query(default=None),
    window_hours: int | None = Query(default=None, ge=1, le=MAX_WINDOW_HOURS),
    limit: int | None = Query(default=None, ge=1),
    requester_tz: str | None = Query(default=None),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    try:
        request = ListAvailabilityRequest(
            therapist_code=therapist_code,
            window_hours=window_hours,
            limit=limit,
            requester_tz=requester_tz,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc

    await ensure_database_ready()

    try:
        return await engine.list_availability(request)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.patch('/slots/{availability_id}', response_model=SlotResponse)
async def edit_availability(
    availability_id: UUID,
    data: EditAvailabilityRequest,
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.edit_availability(availability_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
