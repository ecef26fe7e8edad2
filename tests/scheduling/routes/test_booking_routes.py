import asyncio
import uuid

import pytest
from fastapi import HTTPException, status
from pydantic import ValidationError

from scheduling.core.errors import (
    InvalidRange,
    InvalidTransition,
    NotFound,
    PartialFailure,
    SlotUnavailable,
    StoreUnavailable,
    UpstreamTimeout,
)
from scheduling.routes import booking_routes
from scheduling.routes.booking_routes import cancel_booking, create_booking, list_my_bookings, reschedule_booking
from scheduling.routes.common import error_status_code, to_http_exception
from scheduling.schemas import (
    AddAvailabilityRequest,
    CancelBookingRequest,
    CreateBookingRequest,
    RescheduleBookingRequest,
    TimeRangeInput,
)


async def _database_ready() -> None:
    return None


@pytest.fixture(autouse=True)
def skip_database_bootstrap(monkeypatch) -> None:
    monkeypatch.setattr(booking_routes, 'ensure_database_ready', _database_ready)


async def _add_slots(engine, *clock_ranges: tuple[str, str]) -> list[uuid.UUID]:
    result = await engine.add_availability(
        AddAvailabilityRequest(
            therapist_code='ABC123',
            time_ranges=[
                TimeRangeInput(start_local=f'2025-06-01 {start}', end_local=f'2025-06-01 {end}', tz='America/Los_Angeles')
                for start, end in clock_ranges
            ],
        )
    )
    return [slot.availability_id for slot in result.slots]


@pytest.mark.parametrize(
    ('error', 'status_code'),
    [
        (InvalidRange('bad range'), status.HTTP_400_BAD_REQUEST),
        (NotFound('missing'), status.HTTP_404_NOT_FOUND),
        (SlotUnavailable('taken'), status.HTTP_409_CONFLICT),
        (InvalidTransition('canceled'), status.HTTP_409_CONFLICT),
        (UpstreamTimeout('slow'), status.HTTP_504_GATEWAY_TIMEOUT),
        (StoreUnavailable('down'), status.HTTP_503_SERVICE_UNAVAILABLE),
    ],
)
def test_error_status_code_maps_error_kinds(error, status_code: int) -> None:
    assert error_status_code(error) == status_code


def test_partial_failure_status_depends_on_cause() -> None:
    lost_claim = PartialFailure('stopped', step='claim_new_slot', completed_steps=['release_old_slot'], state={}, cause=SlotUnavailable('taken'))
    broken_store = PartialFailure('stopped', step='repoint_booking', completed_steps=['release_old_slot', 'claim_new_slot'], state={}, cause=StoreUnavailable('down'))

    assert error_status_code(lost_claim) == status.HTTP_409_CONFLICT
    assert error_status_code(broken_store) == status.HTTP_500_INTERNAL_SERVER_ERROR


def test_to_http_exception_carries_structured_detail() -> None:
    slot_id = uuid.uuid4()
    exception = to_http_exception(UpstreamTimeout('timed out', operation='list_availability', availability_id=slot_id))

    assert exception.detail == {
        'kind': 'upstream_timeout',
        'message': 'timed out',
        'context': {'operation': 'list_availability', 'availability_id': str(slot_id)},
        'retryable': True,
    }


def test_cancel_booking_request_limits_reason_length() -> None:
    with pytest.raises(ValidationError):
        CancelBookingRequest(reason='x' * 501)


def test_create_booking_request_requires_uuid() -> None:
    with pytest.raises(ValidationError):
        CreateBookingRequest(availability_id='not-a-uuid')


def test_booking_routes_cover_create_list_and_cancel(scheduling_engine) -> None:
    async def scenario():
        [slot_id] = await _add_slots(scheduling_engine, ('09:00', '10:00'))
        created = await create_booking(CreateBookingRequest(availability_id=slot_id), user_id='user-1', engine=scheduling_engine)
        listed = await list_my_bookings(include_canceled=False, requester_tz=None, user_id='user-1', engine=scheduling_engine)
        canceled = await cancel_booking(created.booking_id, data=None, user_id='user-1', engine=scheduling_engine)
        after_cancel = await list_my_bookings(include_canceled=False, requester_tz=None, user_id='user-1', engine=scheduling_engine)
        with_canceled = await list_my_bookings(include_canceled=True, requester_tz=None, user_id='user-1', engine=scheduling_engine)
        return created, listed, canceled, after_cancel, with_canceled

    created, listed, canceled, after_cancel, with_canceled = asyncio.run(scenario())

    assert created.status == 'scheduled'
    assert [booking.booking_id for booking in listed] == [created.booking_id]
    assert canceled.status == 'canceled'
    assert after_cancel == []
    assert with_canceled[0].status == 'canceled'


def test_create_booking_route_maps_lost_race_to_409(scheduling_engine) -> None:
    async def scenario():
        [slot_id] = await _add_slots(scheduling_engine, ('09:00', '10:00'))
        await create_booking(CreateBookingRequest(availability_id=slot_id), user_id='user-1', engine=scheduling_engine)
        await create_booking(CreateBookingRequest(availability_id=slot_id), user_id='user-2', engine=scheduling_engine)

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(scenario())

    assert exception_info.value.status_code == status.HTTP_409_CONFLICT
    assert exception_info.value.detail['kind'] == 'slot_unavailable'


def test_reschedule_route_reports_partial_failure_detail(scheduling_engine) -> None:
    async def scenario():
        old_id, taken_id = await _add_slots(scheduling_engine, ('09:00', '10:00'), ('11:00', '12:00'))
        mine = await create_booking(CreateBookingRequest(availability_id=old_id), user_id='user-1', engine=scheduling_engine)
        await create_booking(CreateBookingRequest(availability_id=taken_id), user_id='user-2', engine=scheduling_engine)
        await reschedule_booking(
            mine.booking_id,
            RescheduleBookingRequest(new_availability_id=taken_id),
            user_id='user-1',
            engine=scheduling_engine,
        )

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(scenario())

    detail = exception_info.value.detail
    assert exception_info.value.status_code == status.HTTP_409_CONFLICT
    assert detail['kind'] == 'partial_failure'
    assert detail['step'] == 'claim_new_slot'
    assert detail['completed_steps'] == ['release_old_slot']
    assert detail['cause']['kind'] == 'slot_unavailable'
    assert detail['state']['booking_availability_id'] is None


def test_reschedule_route_moves_booking(scheduling_engine) -> None:
    async def scenario():
        old_id, new_id = await _add_slots(scheduling_engine, ('09:00', '10:00'), ('11:00', '12:00'))
        booking = await create_booking(CreateBookingRequest(availability_id=old_id), user_id='user-1', engine=scheduling_engine)
        moved = await reschedule_booking(
            booking.booking_id,
            RescheduleBookingRequest(new_availability_id=new_id),
            user_id='user-1',
            engine=scheduling_engine,
        )
        return new_id, moved

    new_id, moved = asyncio.run(scenario())

    assert moved.slot.availability_id == new_id
    assert moved.slot.booked is True


def test_cancel_and_reschedule_routes_hide_other_users_bookings(scheduling_engine) -> None:
    async def scenario():
        slot_id, other_id = await _add_slots(scheduling_engine, ('09:00', '10:00'), ('11:00', '12:00'))
        booking = await create_booking(CreateBookingRequest(availability_id=slot_id), user_id='user-1', engine=scheduling_engine)

        outcomes = []
        for call in (
            cancel_booking(booking.booking_id, data=None, user_id='user-2', engine=scheduling_engine),
            reschedule_booking(
                booking.booking_id,
                RescheduleBookingRequest(new_availability_id=other_id),
                user_id='user-2',
                engine=scheduling_engine,
            ),
        ):
            try:
                await call
            except HTTPException as exc:
                outcomes.append((exc.status_code, exc.detail['kind']))

        still_mine = await list_my_bookings(include_canceled=False, requester_tz=None, user_id='user-1', engine=scheduling_engine)
        return outcomes, slot_id, still_mine

    outcomes, slot_id, still_mine = asyncio.run(scenario())

    assert outcomes == [(status.HTTP_404_NOT_FOUND, 'not_found'), (status.HTTP_404_NOT_FOUND, 'not_found')]
    assert still_mine[0].status == 'scheduled'
    assert still_mine[0].slot.availability_id == slot_id
