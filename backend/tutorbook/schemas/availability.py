# backend/tutorbook/schemas/availability.py
"""
Availability schemas.

Times are ``"HH:MM"`` strings on the half hour in the tutor's local time;
days of week are Sunday-based (0=Sunday).
"""

import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.enums import SessionMedium
from ..utils.time_grid import is_valid_slot_time
from .base import StandardizedModel, StrictRequestModel


def _check_slot_time(value: str) -> str:
    if not is_valid_slot_time(value):
        raise ValueError("start_time must be HH:MM on the hour or half hour")
    return value


class WeeklySlotInput(StrictRequestModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    medium: SessionMedium

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        return _check_slot_time(v)

    @property
    def key(self) -> tuple[int, str, str]:
        return (self.day_of_week, self.start_time, SessionMedium(self.medium).value)


class DateOverrideInput(StrictRequestModel):
    date: datetime.date
    start_time: str
    medium: SessionMedium
    is_available: bool

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: str) -> str:
        return _check_slot_time(v)


class WeeklySlotView(StandardizedModel):
    id: str
    day_of_week: int
    start_time: str
    medium: SessionMedium


class DateOverrideView(StandardizedModel):
    id: str
    date: datetime.date
    start_time: str
    medium: SessionMedium
    is_available: bool


class TemplateReplaceResult(StandardizedModel):
    added: int
    removed: int
    unchanged: int


class AvailabilityStatus(StandardizedModel):
    has_weekly_slots: bool
    slot_count: int
    media_configured: List[SessionMedium]


class SlotView(StandardizedModel):
    """One 30-minute unit as shown to a student picking a time."""

    date: datetime.date
    start_time: str
    end_time: str
    medium: SessionMedium
    available: bool
    price: Decimal = Field(description="Hourly rate in effect for this medium")
    unit_price: Decimal = Field(description="Price of this 30-minute unit")
    group_spots_left: Optional[int] = None
    group_spots_total: Optional[int] = None
