from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scheduling.models.therapist import Therapist


class TherapistDirectory(Protocol):
    async def get_timezone(self, therapist_code: str) -> str | None:
        ...


class SqlTherapistDirectory:
    """Looks therapist timezones up in the ``therapists`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_timezone(self, therapist_code: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Therapist.timezone).where(Therapist.code == therapist_code)
            )
            timezone = result.scalar_one_or_none()

        return timezone or None
