# backend/tutorbook/models/tutor.py
"""
Tutor booking profile.

Only the fields the availability and booking engine reads live here; the
rest of the tutor's public profile is owned by other services.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import GroupBookingPath, SessionMedium
from ..database import Base

CANCELLATION_NOTICE_HOURS_CHOICES = (6, 12, 24, 48, 72)
LATE_REFUND_PERCENT_CHOICES = (0, 25, 50, 75, 100)
MIN_GROUP_SIZE_FLOOR = 2
MAX_GROUP_SIZE_CEILING = 20


class Tutor(Base):
    __tablename__ = "tutors"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(26), nullable=False, unique=True, index=True)

    base_hourly_rate = Column(Numeric(10, 2), nullable=False)
    group_hourly_rate = Column(Numeric(10, 2), nullable=True)

    min_group_size = Column(Integer, nullable=False, default=2)
    max_group_size = Column(Integer, nullable=False, default=6)
    group_booking_path = Column(String(20), nullable=True)

    cancellation_notice_hours = Column(Integer, nullable=False, default=24)
    late_cancellation_refund_percent = Column(Integer, nullable=False, default=50)

    timezone = Column(String(64), nullable=False, default="Europe/Dublin")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    weekly_entries = relationship(
        "WeeklyTemplateEntry", back_populates="tutor", cascade="all, delete-orphan"
    )
    date_overrides = relationship("DateOverride", back_populates="tutor", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("base_hourly_rate > 0", name="ck_tutors_base_rate_positive"),
        CheckConstraint(
            "group_hourly_rate IS NULL OR group_hourly_rate > 0",
            name="ck_tutors_group_rate_positive",
        ),
        CheckConstraint(
            "max_group_size >= 2 AND max_group_size <= 20", name="ck_tutors_max_group_size"
        ),
        CheckConstraint(
            "min_group_size >= 1 AND min_group_size <= max_group_size",
            name="ck_tutors_min_group_size",
        ),
        CheckConstraint(
            "cancellation_notice_hours IN (6, 12, 24, 48, 72)",
            name="ck_tutors_notice_hours",
        ),
        CheckConstraint(
            "late_cancellation_refund_percent IN (0, 25, 50, 75, 100)",
            name="ck_tutors_late_refund_percent",
        ),
        CheckConstraint(
            "group_booking_path IS NULL OR group_booking_path IN ('QUORUM', 'IMMEDIATE')",
            name="ck_tutors_group_booking_path",
        ),
    )

    def hourly_rate_for(self, medium: SessionMedium) -> Decimal:
        """Rate in effect for a medium; group falls back to the base rate."""
        if SessionMedium(medium) is SessionMedium.GROUP and self.group_hourly_rate is not None:
            return Decimal(self.group_hourly_rate)
        return Decimal(self.base_hourly_rate)

    @property
    def explicit_group_path(self) -> Optional[GroupBookingPath]:
        if not self.group_booking_path:
            return None
        return GroupBookingPath(self.group_booking_path)

    def __repr__(self) -> str:
        return (
            f"<Tutor {self.id}: base={self.base_hourly_rate}, group={self.group_hourly_rate}, "
            f"group_size={self.min_group_size}..{self.max_group_size}>"
        )
