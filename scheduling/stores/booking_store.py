from collections.abc import Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scheduling.core.errors import InvalidTransition, NotFound
from scheduling.models.availability import Availability
from scheduling.models.booking import Booking, BookingStatus
from scheduling.stores.availability_store import AvailabilityStore

Checkpoint = Callable[..., Awaitable[None]]


async def _no_checkpoint(step: str, **details) -> None:
    return None


class BookingStore:
    """Persistence for bookings.

    Every method that moves a booking also moves the slot it references, so a
    scheduled booking always points at a booked slot once the caller commits.
    """

    def __init__(self, session: AsyncSession, availability: AvailabilityStore | None = None) -> None:
        self.session = session
        self.availability = availability or AvailabilityStore(session)

    async def get(self, booking_id: UUID) -> Booking | None:
        result = await self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require(self, booking_id: UUID, user_id: str | None = None) -> Booking:
        booking = await self.get(booking_id)
        # Another user's booking is reported as missing.
        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise NotFound('Booking not found.', booking_id=booking_id)
        return booking

    async def list_for_user(
        self,
        user_id: str,
        include_canceled: bool = False,
    ) -> list[tuple[Booking, Availability | None]]:
        statement = (
            select(Booking, Availability)
            .outerjoin(Availability, Booking.availability_id == Availability.id)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
        )
        if not include_canceled:
            statement = statement.where(Booking.status == BookingStatus.SCHEDULED.value)

        result = await self.session.execute(statement)
        return [(booking, slot) for booking, slot in result.all()]

    async def create(self, user_id: str, slot_id: UUID) -> tuple[Booking, Availability]:
        # Claim first: a lost race raises before any booking row exists.
        slot = await self.availability.set_booked(slot_id, True)

        booking = Booking(
            user_id=user_id,
            therapist_code=slot.therapist_code,
            availability_id=slot.id,
            status=BookingStatus.SCHEDULED.value,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking, slot

    async def cancel(self, booking_id: UUID, reason: str | None = None, user_id: str | None = None) -> Booking:
        booking = await self._require(booking_id, user_id)

        if booking.status == BookingStatus.CANCELED.value:
            return booking

        if booking.availability_id is not None:
            await self.availability.release(booking.availability_id)

        booking.status = BookingStatus.CANCELED.value
        booking.cancel_reason = reason
        await self.session.flush()
        return booking

    async def reschedule(
        self,
        booking_id: UUID,
        new_slot_id: UUID,
        checkpoint: Checkpoint | None = None,
        user_id: str | None = None,
    ) -> tuple[Booking, Availability]:
        """Move a booking to ``new_slot_id``.

        Runs release-old, claim-new, repoint in that order. ``checkpoint`` is
        awaited with the step name and the slot it touched after each step
        that changed state, which lets the caller commit between steps and
        know how far it got. With ``user_id`` set, only that user's booking
        can be moved.
        """
        checkpoint = checkpoint or _no_checkpoint
        booking = await self._require(booking_id, user_id)

        if booking.status == BookingStatus.CANCELED.value:
            raise InvalidTransition('Canceled bookings cannot be rescheduled.', booking_id=booking_id)

        if await self.availability.get(new_slot_id) is None:
            raise NotFound('Availability slot not found.', availability_id=new_slot_id)

        previous_slot_id = booking.availability_id
        if previous_slot_id is not None:
            await self.availability.release(previous_slot_id)
            booking.availability_id = None
            await self.session.flush()
            await checkpoint('release_old_slot', availability_id=previous_slot_id)

        new_slot = await self.availability.set_booked(new_slot_id, True)
        await checkpoint('claim_new_slot', availability_id=new_slot.id)

        booking.availability_id = new_slot.id
        booking.therapist_code = new_slot.therapist_code
        booking.status = BookingStatus.SCHEDULED.value
        await self.session.flush()
        return booking, new_slot
