"""Booking model definitions."""

import uuid
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from scheduling.database import Base
from scheduling.models.availability import utc_now


class BookingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELED = "canceled"


class Booking(Base):
    """Represents a client's claim on one availability slot."""
    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False)
    therapist_code = Column(String(32), nullable=False)
    # Null once the slot has been removed upstream or while a reschedule is in flight.
    availability_id = Column(Uuid, ForeignKey("availability.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default=BookingStatus.SCHEDULED.value)
    cancel_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
