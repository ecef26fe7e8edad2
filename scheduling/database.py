import asyncio

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from scheduling.core import config


engine = create_async_engine(
    config.DATABASE_URL,
    echo=config.DB_ECHO,
    pool_pre_ping=True,
)

SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()

_schema_lock = asyncio.Lock()
_schema_checked = False


def _existing_columns(connection, table_name: str) -> set[str] | None:
    inspector = inspect(connection)
    if table_name not in inspector.get_table_names():
        return None
    return {column['name'] for column in inspector.get_columns(table_name)}


async def ensure_scheduling_schema(target: AsyncEngine | None = None) -> None:
    global _schema_checked

    if _schema_checked and target is None:
        return

    async with _schema_lock:
        if _schema_checked and target is None:
            return

        # Registers the tables on Base.metadata.
        from scheduling.models import availability, booking, therapist  # noqa: F401

        bind = target or engine
        async with bind.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)

            booking_columns = await connection.run_sync(_existing_columns, 'bookings')
            migration_steps = [
                ('cancel_reason', 'ALTER TABLE bookings ADD COLUMN cancel_reason VARCHAR'),
            ]
            for column_name, statement in migration_steps:
                if booking_columns is not None and column_name not in booking_columns:
                    await connection.execute(text(statement))

            await connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_open_start '
                    'ON availability(therapist_code, booked, start_utc)'
                )
            )
            await connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_user_status ON bookings(user_id, status)')
            )

        if target is None:
            _schema_checked = True
