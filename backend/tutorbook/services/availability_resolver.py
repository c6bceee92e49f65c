# backend/tutorbook/services/availability_resolver.py
"""
Availability Resolver

Turns a tutor's weekly template, date overrides and current bookings into
the list of 30-minute units a student can pick from.

A unit is *offered* when an override for that exact date/time/medium says
so, or, without an override, when the weekly template has the same
weekday/time/medium. Offered units that are still in the future are
emitted; occupancy then decides ``available``:

- VIDEO / IN_PERSON: any booking covering the unit blocks it
- GROUP: a one-to-one booking blocks it, and so does a full group

The resolver is read-only and advisory. ``BookingService.try_book`` runs
the same checks again under the tutor lock before anything is committed.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.enums import SessionMedium
from ..core.exceptions import NotFoundException, ValidationException
from ..models.booking import Booking
from ..models.tutor import Tutor
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import SlotView
from ..utils.time_grid import (
    TzInfo,
    UnitKey,
    date_range,
    day_of_week,
    end_of_unit,
    get_timezone,
    operating_window_times,
    to_local,
    unit_start_datetime,
    units_spanned,
)
from .base import BaseService
from .pricing_service import unit_price


@dataclass
class UnitOccupancy:
    one_to_one_booked: bool = False
    group_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.one_to_one_booked and self.group_count == 0


def parse_medium(value: object) -> SessionMedium:
    try:
        return SessionMedium(value)
    except ValueError as exc:
        raise ValidationException(
            f"Unknown session medium {value!r}",
            code="INVALID_MEDIUM",
            details={"medium": value, "allowed": [m.value for m in SessionMedium]},
        ) from exc


def is_unit_offered(
    unit: UnitKey,
    template_keys: Set[Tuple[int, str]],
    override_map: Mapping[Tuple[date, str], bool],
) -> bool:
    """Override wins; otherwise the weekly template decides."""
    override = override_map.get((unit.date, unit.start_time))
    if override is not None:
        return override
    return (day_of_week(unit.date), unit.start_time) in template_keys


def build_occupancy(bookings: Iterable[Booking], tz: Optional[TzInfo]) -> Dict[UnitKey, UnitOccupancy]:
    """
    Per-unit occupancy from bookings of any medium.

    A booking counts once per unit key even when the clocks go back and its
    span repeats a local time.
    """
    occupancy: Dict[UnitKey, UnitOccupancy] = {}
    for booking in bookings:
        for unit in dict.fromkeys(units_spanned(booking.scheduled_at, booking.duration_mins, tz)):
            slot = occupancy.setdefault(unit, UnitOccupancy())
            if booking.medium == SessionMedium.GROUP.value:
                slot.group_count += 1
            else:
                slot.one_to_one_booked = True
    return occupancy


class AvailabilityResolver(BaseService):
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.tutor_repository = RepositoryFactory.create_tutor_repository(db)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    def _get_tutor(self, tutor_id: str) -> Tutor:
        tutor = self.tutor_repository.get_active(tutor_id)
        if tutor is None:
            raise NotFoundException(
                "Tutor not found", code="TUTOR_NOT_FOUND", details={"tutor_id": tutor_id}
            )
        return tutor

    def _resolve_range(
        self, tz: TzInfo, start_date: Optional[date], end_date: Optional[date]
    ) -> Tuple[date, date]:
        if start_date is None:
            start_date = to_local(self.clock.now(), tz).date()
        if end_date is None:
            end_date = start_date + timedelta(days=settings.availability_default_days)
        if end_date < start_date:
            raise ValidationException(
                "end_date must not be before start_date",
                code="INVALID_DATE_RANGE",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        if (end_date - start_date).days > settings.availability_max_days:
            raise ValidationException(
                f"Date range may span at most {settings.availability_max_days} days",
                code="DATE_RANGE_TOO_LONG",
                details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        return start_date, end_date

    @BaseService.measure_operation("resolve_slots")
    def resolve(
        self,
        tutor_id: str,
        medium: SessionMedium,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[SlotView]:
        """
        Slots for ``tutor_id`` and ``medium`` between two local dates, inclusive.

        Defaults to today (tutor's timezone) through the next
        ``availability_default_days`` days.

        Raises:
            NotFoundException: unknown or inactive tutor
            ValidationException: unknown medium or a bad date range
        """
        medium = parse_medium(medium)
        tutor = self._get_tutor(tutor_id)
        tz = get_timezone(tutor.timezone)
        start_date, end_date = self._resolve_range(tz, start_date, end_date)

        template_keys = self.availability_repository.get_template_keys(tutor.id, medium.value)
        override_map = self.availability_repository.get_override_map(
            tutor.id, medium.value, start_date, end_date
        )
        range_start = unit_start_datetime(start_date, "00:00", tz)
        range_end = unit_start_datetime(end_date + timedelta(days=1), "00:00", tz)
        occupancy = build_occupancy(
            self.booking_repository.get_overlapping(tutor.id, range_start, range_end), tz
        )

        now = self.clock.now()
        hourly_rate = tutor.hourly_rate_for(medium)
        per_unit = unit_price(hourly_rate)
        window = operating_window_times()
        max_group_size = int(tutor.max_group_size)

        slots: List[SlotView] = []
        for day in date_range(start_date, end_date):
            for start_time in window:
                unit = UnitKey(day, start_time)
                if not is_unit_offered(unit, template_keys, override_map):
                    continue
                if unit_start_datetime(day, start_time, tz) <= now:
                    continue

                occupied = occupancy.get(unit, UnitOccupancy())
                spots_left: Optional[int] = None
                spots_total: Optional[int] = None
                if medium is SessionMedium.GROUP:
                    available = (
                        not occupied.one_to_one_booked and occupied.group_count < max_group_size
                    )
                    if available:
                        spots_total = max_group_size
                        spots_left = max_group_size - occupied.group_count
                else:
                    available = occupied.is_empty

                slots.append(
                    SlotView(
                        date=day,
                        start_time=start_time,
                        end_time=end_of_unit(start_time),
                        medium=medium,
                        available=available,
                        price=hourly_rate,
                        unit_price=per_unit,
                        group_spots_left=spots_left,
                        group_spots_total=spots_total,
                    )
                )

        self.logger.debug(
            "Resolved availability",
            extra={
                "tutor_id": tutor.id,
                "medium": medium.value,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "slots": len(slots),
            },
        )
        return slots
