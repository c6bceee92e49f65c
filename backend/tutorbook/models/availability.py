# backend/tutorbook/models/availability.py
"""
Availability models.

Two collections describe when a tutor can teach:

WeeklyTemplateEntry
    Standing weekly offer, one row per (day of week, 30-minute start, medium).
    Day 0 is Sunday. Replaced as a whole set by the tutor.

DateOverride
    Exception for one calendar date. ``is_available`` may open a unit the
    template lacks or close one it has; an override always wins.

Start times are stored as ``"HH:MM"`` strings in the tutor's local time.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

_MEDIUM_CHECK = "medium IN ('VIDEO', 'IN_PERSON', 'GROUP')"


class WeeklyTemplateEntry(Base):
    __tablename__ = "tutor_weekly_slots"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), ForeignKey("tutors.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    medium = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    tutor = relationship("Tutor", back_populates="weekly_entries")

    __table_args__ = (
        UniqueConstraint(
            "tutor_id", "day_of_week", "start_time", "medium", name="uq_tutor_weekly_slot"
        ),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_weekly_day_of_week"),
        CheckConstraint(_MEDIUM_CHECK, name="ck_weekly_medium"),
        Index("ix_tutor_weekly_slots_tutor_medium", "tutor_id", "medium"),
    )

    @property
    def key(self) -> tuple[int, str, str]:
        return (self.day_of_week, self.start_time, self.medium)

    def __repr__(self) -> str:
        return f"<WeeklyTemplateEntry {self.tutor_id} day={self.day_of_week} {self.start_time} {self.medium}>"


class DateOverride(Base):
    __tablename__ = "tutor_date_overrides"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    tutor_id = Column(String(26), ForeignKey("tutors.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    medium = Column(String(20), nullable=False)
    is_available = Column(Boolean, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tutor = relationship("Tutor", back_populates="date_overrides")

    __table_args__ = (
        UniqueConstraint("tutor_id", "date", "start_time", "medium", name="uq_tutor_date_override"),
        CheckConstraint(_MEDIUM_CHECK, name="ck_override_medium"),
        Index("ix_tutor_date_overrides_tutor_date", "tutor_id", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<DateOverride {self.tutor_id} {self.date} {self.start_time} {self.medium} "
            f"available={self.is_available}>"
        )
