"""Therapist profile model definitions."""

from sqlalchemy import Column, String
from scheduling.database import Base


class Therapist(Base):
    """Read-only therapist profile; only the timezone is used here."""
    __tablename__ = "therapists"

    code = Column(String(32), primary_key=True)
    display_name = Column(String)
    timezone = Column(String)
