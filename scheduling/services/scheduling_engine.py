"""Scheduling engine: the only component that drives both stores for a request.

Each operation opens its own session, validates and converts its input before
touching storage, bounds every storage step with the configured timeout and
shapes the response with a display for the therapist's zone and the
requester's zone.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scheduling.core.config import SchedulingConfig
from scheduling.core.errors import (
    InvalidInput,
    NotFound,
    PartialFailure,
    SchedulingError,
    SlotUnavailable,
    StoreUnavailable,
    UpstreamTimeout,
)
from scheduling.core.timezones import TimeZoneResolver, format_utc
from scheduling.models.availability import Availability
from scheduling.models.booking import Booking
from scheduling.schemas import (
    AddAvailabilityRequest,
    AddAvailabilityResponse,
    AddedSlotResponse,
    BookingResponse,
    CancelBookingRequest,
    CancelBookingResponse,
    CreateBookingRequest,
    EditAvailabilityRequest,
    ListAvailabilityRequest,
    ListAvailabilityResponse,
    RangeDisplay,
    RejectedRangeResponse,
    RescheduleBookingRequest,
    RescheduleBookingResponse,
    SlotDisplay,
    SlotResponse,
)
from scheduling.services.therapist_directory import SqlTherapistDirectory, TherapistDirectory
from scheduling.stores.availability_store import AvailabilityStore, validate_range
from scheduling.stores.booking_store import BookingStore

logger = logging.getLogger(__name__)

T = TypeVar('T')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: SchedulingConfig,
        resolver: TimeZoneResolver | None = None,
        directory: TherapistDirectory | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self.config = config
        self.resolver = resolver or TimeZoneResolver(config.default_timezone)
        self.directory = directory or SqlTherapistDirectory(session_factory)
        self._clock = clock

    @asynccontextmanager
    async def _session(self):
        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def _bounded(self, operation: str, step: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.store_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeout(
                f'{operation} timed out during {step}.',
                operation=operation,
                step=step,
                timeout_seconds=self.config.store_timeout_seconds,
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(
                'Database unavailable. Verify DATABASE_URL and database credentials.',
                operation=operation,
                step=step,
                error=exc.__class__.__name__,
            ) from exc

    def _therapist_code(self, candidate: str | None) -> str:
        code = candidate or self.config.default_therapist_code
        if not code:
            raise InvalidInput('therapist_code is required.')
        return code

    async def _therapist_zone(self, operation: str, therapist_code: str) -> str:
        therapist_tz = await self._bounded(operation, 'therapist_timezone', self.directory.get_timezone(therapist_code))
        return self.resolver.resolve_zone(therapist_tz)

    async def _display_zones(self, operation: str, therapist_code: str, requester_tz: str | None) -> tuple[str, str]:
        therapist_zone = await self._therapist_zone(operation, therapist_code)
        return therapist_zone, self.resolver.resolve_zone(requester_tz)

    async def _committed_display_zones(
        self,
        operation: str,
        therapist_code: str,
        requester_tz: str | None,
    ) -> tuple[str, str]:
        """Display zones for a write that has already committed.

        The write stands either way, so a failed therapist lookup only costs
        the therapist-zone rendering: it falls back to the default zone.
        """
        try:
            return await self._display_zones(operation, therapist_code, requester_tz)
        except (UpstreamTimeout, StoreUnavailable) as exc:
            logger.warning(
                'Therapist timezone lookup for %s failed after %s committed (%s); using %s',
                therapist_code,
                operation,
                exc.kind,
                self.resolver.default_zone,
            )
            return self.resolver.resolve_zone(None), self.resolver.resolve_zone(requester_tz)

    def _slot_fields(self, slot: Availability, therapist_zone: str, requester_zone: str) -> dict[str, Any]:
        return {
            'availability_id': slot.id,
            'therapist_code': slot.therapist_code,
            'start_utc': format_utc(slot.start_utc),
            'end_utc': format_utc(slot.end_utc),
            'booked': slot.booked,
            'display': SlotDisplay(
                for_therapist=RangeDisplay(**self.resolver.range_display(slot.start_utc, slot.end_utc, therapist_zone)),
                for_requester=RangeDisplay(**self.resolver.range_display(slot.start_utc, slot.end_utc, requester_zone)),
            ),
        }

    def _slot_response(self, slot: Availability, therapist_zone: str, requester_zone: str) -> SlotResponse:
        return SlotResponse(**self._slot_fields(slot, therapist_zone, requester_zone))

    def _booking_response(
        self,
        booking: Booking,
        slot: Availability | None,
        therapist_zone: str,
        requester_zone: str,
    ) -> BookingResponse:
        return BookingResponse(
            booking_id=booking.id,
            user_id=booking.user_id,
            therapist_code=booking.therapist_code,
            status=booking.status,
            cancel_reason=booking.cancel_reason,
            slot=self._slot_response(slot, therapist_zone, requester_zone) if slot is not None else None,
        )

    async def add_availability(self, request: AddAvailabilityRequest) -> AddAvailabilityResponse:
        operation = 'add_availability'
        therapist_code = self._therapist_code(request.therapist_code)

        ranges: list[tuple[datetime, datetime]] = []
        rejected: list[RejectedRangeResponse] = []
        for index, entry in enumerate(request.time_ranges):
            try:
                start_utc = self.resolver.local_to_instant(entry.start_local, entry.tz)
                end_utc = self.resolver.local_to_instant(entry.end_local, entry.tz)
                validate_range(start_utc, end_utc)
            except InvalidInput as exc:
                rejected.append(
                    RejectedRangeResponse(
                        index=index,
                        kind=exc.kind,
                        message=exc.message,
                        start_local=entry.start_local,
                        end_local=entry.end_local,
                    )
                )
                continue
            ranges.append((start_utc, end_utc))

        if not ranges:
            raise InvalidInput(
                'No valid time ranges were provided.',
                therapist_code=therapist_code,
                rejected=[item.model_dump() for item in rejected],
            )

        async with self._session() as session:
            store = AvailabilityStore(session)
            added = await self._bounded(operation, 'insert_slots', store.add_slots(therapist_code, ranges))
            await self._bounded(operation, 'commit', session.commit())

        created_count = sum(1 for _, created in added if created)
        logger.info(
            'Therapist %s declared %d slot(s): %d new, %d existing, %d rejected',
            therapist_code,
            len(added),
            created_count,
            len(added) - created_count,
            len(rejected),
        )

        therapist_zone, requester_zone = await self._committed_display_zones(
            operation, therapist_code, request.requester_tz
        )
        return AddAvailabilityResponse(
            therapist_code=therapist_code,
            slots=[
                AddedSlotResponse(created=created, **self._slot_fields(slot, therapist_zone, requester_zone))
                for slot, created in added
            ],
            rejected=rejected,
        )

    async def list_availability(self, request: ListAvailabilityRequest) -> ListAvailabilityResponse:
        operation = 'list_availability'
        therapist_code = self._therapist_code(request.therapist_code)
        window_hours = request.window_hours or self.config.default_window_hours
        limit = min(request.limit or self.config.default_slot_limit, self.config.max_slot_limit)

        window_start = self._clock()
        window_end = window_start + timedelta(hours=window_hours)

        async with self._session() as session:
            store = AvailabilityStore(session)
            slots = await self._bounded(
                operation,
                'list_open_slots',
                store.list_open_slots(therapist_code, window_start, window_end, limit),
            )

        therapist_zone, requester_zone = await self._display_zones(operation, therapist_code, request.requester_tz)
        return ListAvailabilityResponse(
            therapist_code=therapist_code,
            window_start=format_utc(window_start),
            window_end=format_utc(window_end),
            slots=[self._slot_response(slot, therapist_zone, requester_zone) for slot in slots],
        )

    async def edit_availability(self, availability_id: UUID, request: EditAvailabilityRequest) -> SlotResponse:
        operation = 'edit_availability'
        new_start = self.resolver.local_to_instant(request.start_local, request.tz) if request.start_local else None
        new_end = self.resolver.local_to_instant(request.end_local, request.tz) if request.end_local else None
        if new_start is not None and new_end is not None:
            validate_range(new_start, new_end)

        async with self._session() as session:
            store = AvailabilityStore(session)
            current = await self._bounded(operation, 'load_slot', store.get(availability_id))
            if current is None:
                raise NotFound('Availability slot not found.', availability_id=availability_id)

            slot = await self._bounded(
                operation,
                'move_slot',
                store.move_slot(availability_id, new_start or current.start_utc, new_end or current.end_utc),
            )
            await self._bounded(operation, 'commit', session.commit())

        logger.info('Slot %s moved to %s-%s', slot.id, format_utc(slot.start_utc), format_utc(slot.end_utc))
        therapist_zone, requester_zone = await self._committed_display_zones(
            operation, slot.therapist_code, request.requester_tz
        )
        return self._slot_response(slot, therapist_zone, requester_zone)

    async def create_booking(self, user_id: str, request: CreateBookingRequest) -> BookingResponse:
        operation = 'create_booking'
        user_id = (user_id or '').strip()
        if not user_id:
            raise InvalidInput('user_id is required.')

        try:
            async with self._session() as session:
                store = BookingStore(session)
                booking, slot = await self._bounded(
                    operation,
                    'claim_slot_and_insert_booking',
                    store.create(user_id, request.availability_id),
                )
                await self._bounded(operation, 'commit', session.commit())
        except SlotUnavailable:
            logger.warning('Booking attempt by %s lost slot %s', user_id, request.availability_id)
            raise

        logger.info('Booking %s created for slot %s', booking.id, slot.id)
        therapist_zone, requester_zone = await self._committed_display_zones(
            operation, slot.therapist_code, request.requester_tz
        )
        return self._booking_response(booking, slot, therapist_zone, requester_zone)

    async def list_bookings(
        self,
        user_id: str,
        include_canceled: bool = False,
        requester_tz: str | None = None,
    ) -> list[BookingResponse]:
        operation = 'list_bookings'
        user_id = (user_id or '').strip()
        if not user_id:
            raise InvalidInput('user_id is required.')

        async with self._session() as session:
            store = BookingStore(session)
            rows = await self._bounded(operation, 'list_bookings', store.list_for_user(user_id, include_canceled))

        requester_zone = self.resolver.resolve_zone(requester_tz)
        therapist_zones: dict[str, str] = {}
        responses: list[BookingResponse] = []
        for booking, slot in rows:
            if booking.therapist_code not in therapist_zones:
                therapist_zones[booking.therapist_code] = await self._therapist_zone(operation, booking.therapist_code)
            responses.append(
                self._booking_response(booking, slot, therapist_zones[booking.therapist_code], requester_zone)
            )

        return responses

    async def cancel_booking(
        self,
        booking_id: UUID,
        request: CancelBookingRequest,
        user_id: str | None = None,
    ) -> CancelBookingResponse:
        operation = 'cancel_booking'

        async with self._session() as session:
            store = BookingStore(session)
            booking = await self._bounded(
                operation,
                'release_slot_and_cancel',
                store.cancel(booking_id, request.reason, user_id=user_id),
            )
            await self._bounded(operation, 'commit', session.commit())

        logger.info('Booking %s canceled', booking.id)
        return CancelBookingResponse(booking_id=booking.id, status=booking.status)

    async def reschedule_booking(
        self,
        booking_id: UUID,
        request: RescheduleBookingRequest,
        user_id: str | None = None,
    ) -> RescheduleBookingResponse:
        """Move a booking to another slot.

        Steps commit one at a time (release old, claim new, repoint). When a
        later step fails after an earlier one committed, nothing is undone: a
        ``PartialFailure`` describes the state left behind.
        """
        operation = 'reschedule_booking'
        completed: dict[str, UUID] = {}

        async with self._session() as session:
            store = BookingStore(session)

            async def checkpoint(step: str, availability_id: UUID) -> None:
                await session.commit()
                completed[step] = availability_id

            try:
                booking, slot = await self._bounded(
                    operation,
                    'reschedule',
                    store.reschedule(
                        booking_id,
                        request.new_availability_id,
                        checkpoint=checkpoint,
                        user_id=user_id,
                    ),
                )
                await self._bounded(operation, 'commit', session.commit())
            except SchedulingError as exc:
                if not completed:
                    raise
                raise self._reschedule_partial_failure(booking_id, request.new_availability_id, completed, exc) from exc

        logger.info('Booking %s rescheduled to slot %s', booking.id, slot.id)
        therapist_zone, requester_zone = await self._committed_display_zones(
            operation, slot.therapist_code, request.requester_tz
        )
        return RescheduleBookingResponse(
            booking_id=booking.id,
            therapist_code=booking.therapist_code,
            slot=self._slot_response(slot, therapist_zone, requester_zone),
        )

    def _reschedule_partial_failure(
        self,
        booking_id: UUID,
        new_availability_id: UUID,
        completed: dict[str, UUID],
        cause: SchedulingError,
    ) -> PartialFailure:
        new_slot_claimed = 'claim_new_slot' in completed
        failed_step = 'repoint_booking' if new_slot_claimed else 'claim_new_slot'
        state = {
            'booking_id': booking_id,
            'booking_status': 'scheduled',
            'booking_availability_id': None,
            'old_availability_id': completed.get('release_old_slot'),
            'old_slot_booked': False,
            'new_availability_id': new_availability_id,
            'new_slot_claimed': new_slot_claimed,
        }
        logger.error(
            'Reschedule of booking %s stopped at %s after %s: %s',
            booking_id,
            failed_step,
            ', '.join(completed),
            cause.kind,
        )
        return PartialFailure(
            f'Reschedule stopped at {failed_step}; the booking is no longer attached to a slot.',
            step=failed_step,
            completed_steps=list(completed),
            state=state,
            cause=cause,
            operation='reschedule_booking',
        )
