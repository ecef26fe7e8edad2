from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scheduling.core.errors import InvalidInput, InvalidRange, InvalidTransition, NotFound, SlotUnavailable
from scheduling.core.timezones import ensure_utc, format_utc
from scheduling.models.availability import Availability

SLOT_KEY_COLUMNS = ['therapist_code', 'start_utc', 'end_utc']
INSERT_IF_ABSENT = {
    'postgresql': postgresql_insert,
    'sqlite': sqlite_insert,
}


def validate_range(start_utc: datetime, end_utc: datetime) -> None:
    if ensure_utc(end_utc) <= ensure_utc(start_utc):
        raise InvalidRange(
            'Slot end must be after its start.',
            start_utc=format_utc(start_utc),
            end_utc=format_utc(end_utc),
        )


class AvailabilityStore:
    """Persistence for declared slots.

    The store never commits; the caller owns the transaction. ``set_booked`` is
    a single conditional UPDATE so the database arbitrates concurrent claims.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: UUID) -> Availability | None:
        result = await self.session.execute(
            select(Availability)
            .where(Availability.id == slot_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find(self, therapist_code: str, start_utc: datetime, end_utc: datetime) -> Availability | None:
        result = await self.session.execute(
            select(Availability)
            .where(
                Availability.therapist_code == therapist_code,
                Availability.start_utc == ensure_utc(start_utc),
                Availability.end_utc == ensure_utc(end_utc),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _insert_if_absent(self, therapist_code: str, start_utc: datetime, end_utc: datetime) -> bool:
        values = {
            'therapist_code': therapist_code,
            'start_utc': start_utc,
            'end_utc': end_utc,
            'booked': False,
        }
        dialect_name = self.session.get_bind().dialect.name
        insert_factory = INSERT_IF_ABSENT.get(dialect_name)

        if insert_factory is not None:
            statement = (
                insert_factory(Availability)
                .values(**values)
                .on_conflict_do_nothing(index_elements=SLOT_KEY_COLUMNS)
            )
            result = await self.session.execute(statement)
            return result.rowcount == 1

        # Dialects without ON CONFLICT: check first, the unique constraint still guards the race.
        if await self.find(therapist_code, start_utc, end_utc) is not None:
            return False
        self.session.add(Availability(**values))
        await self.session.flush()
        return True

    async def add_slots(
        self,
        therapist_code: str,
        ranges: list[tuple[datetime, datetime]],
    ) -> list[tuple[Availability, bool]]:
        """Insert each range unless it already exists; return ``(slot, created)`` pairs.

        An existing slot is returned untouched, so re-declaring a booked range
        never clears its booked flag.
        """
        for start_utc, end_utc in ranges:
            validate_range(start_utc, end_utc)

        added: list[tuple[Availability, bool]] = []
        for start_utc, end_utc in ranges:
            start_utc, end_utc = ensure_utc(start_utc), ensure_utc(end_utc)
            created = await self._insert_if_absent(therapist_code, start_utc, end_utc)
            slot = await self.find(therapist_code, start_utc, end_utc)
            added.append((slot, created))

        return added

    async def list_open_slots(
        self,
        therapist_code: str,
        window_start: datetime,
        window_end: datetime,
        limit: int,
    ) -> list[Availability]:
        if window_end <= window_start or limit <= 0:
            return []

        result = await self.session.execute(
            select(Availability)
            .where(
                Availability.therapist_code == therapist_code,
                Availability.booked.is_(False),
                Availability.start_utc >= ensure_utc(window_start),
                Availability.start_utc < ensure_utc(window_end),
            )
            .order_by(Availability.start_utc.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def set_booked(self, slot_id: UUID, desired: bool) -> Availability:
        result = await self.session.execute(
            update(Availability)
            .where(Availability.id == slot_id, Availability.booked.is_(not desired))
            .values(booked=desired)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            slot = await self.get(slot_id)
            if slot is None:
                raise NotFound('Availability slot not found.', availability_id=slot_id)
            if desired:
                raise SlotUnavailable('This slot is already booked.', availability_id=slot_id)
            raise InvalidTransition('This slot is not booked.', availability_id=slot_id)

        return await self.get(slot_id)

    async def release(self, slot_id: UUID) -> Availability | None:
        await self.session.execute(
            update(Availability)
            .where(Availability.id == slot_id)
            .values(booked=False)
            .execution_options(synchronize_session=False)
        )
        return await self.get(slot_id)

    async def move_slot(self, slot_id: UUID, start_utc: datetime, end_utc: datetime) -> Availability:
        validate_range(start_utc, end_utc)

        try:
            result = await self.session.execute(
                update(Availability)
                .where(Availability.id == slot_id, Availability.booked.is_(False))
                .values(start_utc=ensure_utc(start_utc), end_utc=ensure_utc(end_utc))
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as exc:
            raise InvalidInput(
                'The therapist already has a slot with this start and end.',
                availability_id=slot_id,
            ) from exc

        if result.rowcount != 1:
            slot = await self.get(slot_id)
            if slot is None:
                raise NotFound('Availability slot not found.', availability_id=slot_id)
            raise InvalidTransition('Booked slots cannot be moved.', availability_id=slot_id)

        return await self.get(slot_id)
