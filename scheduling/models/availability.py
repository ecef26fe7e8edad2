"""Availability model definitions."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, UniqueConstraint, Uuid, false
from scheduling.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Availability(Base):
    """Represents an open slot a therapist has declared."""
    __tablename__ = "availability"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    therapist_code = Column(String(32), nullable=False, index=True)
    start_utc = Column(DateTime(timezone=True), nullable=False)
    end_utc = Column(DateTime(timezone=True), nullable=False)
    booked = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("start_utc < end_utc", name="ck_availability_range"),
        UniqueConstraint("therapist_code", "start_utc", "end_utc", name="uq_availability_therapist_range"),
    )
