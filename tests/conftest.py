import asyncio
import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite:///./test.db')

from scheduling.core.config import SchedulingConfig  # noqa: E402
from scheduling.database import ensure_scheduling_schema  # noqa: E402
from scheduling.models.availability import Availability  # noqa: E402
from scheduling.models.booking import Booking  # noqa: E402
from scheduling.models.therapist import Therapist  # noqa: E402
from scheduling.services.scheduling_engine import SchedulingEngine  # noqa: E402

FIXED_NOW = datetime(2025, 5, 31, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}", poolclass=NullPool)
    asyncio.run(ensure_scheduling_schema(engine))

    try:
        yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    finally:
        asyncio.run(engine.dispose())


@pytest.fixture
def scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(
        default_timezone='America/Los_Angeles',
        default_therapist_code='ABC123',
        store_timeout_seconds=5,
    )


@pytest.fixture
def scheduling_engine(session_factory, scheduling_config) -> SchedulingEngine:
    asyncio.run(seed_therapist(session_factory, 'ABC123', 'America/Los_Angeles'))
    return SchedulingEngine(session_factory, scheduling_config, clock=lambda: FIXED_NOW)


async def seed_therapist(session_factory, code: str, zone: str | None) -> None:
    async with session_factory() as session:
        session.add(Therapist(code=code, display_name=f'Therapist {code}', timezone=zone))
        await session.commit()


async def load_slot(session_factory, slot_id) -> Availability | None:
    async with session_factory() as session:
        return await session.get(Availability, slot_id)


async def load_booking(session_factory, booking_id) -> Booking | None:
    async with session_factory() as session:
        return await session.get(Booking, booking_id)


async def count_bookings(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(Booking))
        return len(result.scalars().all())
