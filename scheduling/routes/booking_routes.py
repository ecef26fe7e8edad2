from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from scheduling.auth.dependencies import get_current_user_id
from scheduling.core.errors import SchedulingError
from scheduling.routes.common import ensure_database_ready, get_scheduling_engine, to_http_exception
from scheduling.schemas import (
    BookingResponse,
    CancelBookingRequest,
    CancelBookingResponse,
    CreateBookingRequest,
    RescheduleBookingRequest,
    RescheduleBookingResponse,
)
from scheduling.services.scheduling_engine import SchedulingEngine

router = APIRouter(tags=['bookings'])


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: CreateBookingRequest,
    user_id: str = Depends(get_current_user_id),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.create_booking(user_id, data)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.get('', response_model=list[BookingResponse])
async def list_my_bookings(
    include_canceled: bool = Query(default=False),
    requester_tz: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.list_bookings(user_id, include_canceled=include_canceled, requester_tz=requester_tz)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{booking_id}/cancel', response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: CancelBookingRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.cancel_booking(booking_id, data or CancelBookingRequest(), user_id=user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{booking_id}/reschedule', response_model=RescheduleBookingResponse)
async def reschedule_booking(
    booking_id: UUID,
    data: RescheduleBookingRequest,
    user_id: str = Depends(get_current_user_id),
    engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    await ensure_database_ready()

    try:
        return await engine.reschedule_booking(booking_id, data, user_id=user_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
