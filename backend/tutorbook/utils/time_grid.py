# backend/tutorbook/utils/time_grid.py
"""
Discretization of the day into fixed 30-minute units.

Units are keyed by ``(date, "HH:MM")`` in the tutor's local wall clock, which
is how templates and overrides are stored. Booking instants are kept in UTC;
``units_spanned`` bridges the two by stepping exactly 30 minutes of absolute
time from the start and reading each step off the tutor's clock.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
import re
from typing import Iterator, List, NamedTuple, Optional, Union

import pytz

from ..core.config import settings
from ..core.exceptions import ValidationException

UNIT_MINUTES = 30
UNIT = timedelta(minutes=UNIT_MINUTES)
MAX_DURATION_MINS = 480

_SLOT_TIME_RE = re.compile(r"^([01]\d|2[0-3]):(00|30)$")

TzInfo = Union[pytz.BaseTzInfo, timezone]


class UnitKey(NamedTuple):
    date: date
    start_time: str

    def __str__(self) -> str:
        return f"{self.date.isoformat()} {self.start_time}"


def is_valid_slot_time(value: str) -> bool:
    return isinstance(value, str) and bool(_SLOT_TIME_RE.match(value))


def validate_slot_time(value: str) -> str:
    if not is_valid_slot_time(value):
        raise ValidationException(
            f"Invalid start time {value!r}; expected HH:MM on the half hour",
            code="INVALID_SLOT_TIME",
            details={"start_time": value},
        )
    return value


def validate_duration(duration_mins: int) -> int:
    """Duration must be a positive multiple of 30 no longer than eight hours."""
    if (
        isinstance(duration_mins, bool)
        or not isinstance(duration_mins, int)
        or duration_mins <= 0
        or duration_mins > MAX_DURATION_MINS
        or duration_mins % UNIT_MINUTES != 0
    ):
        raise ValidationException(
            f"Duration must be a multiple of {UNIT_MINUTES} minutes between "
            f"{UNIT_MINUTES} and {MAX_DURATION_MINS}",
            code="INVALID_DURATION",
            details={"duration_mins": duration_mins},
        )
    return duration_mins


def format_slot_time(value: Union[time, datetime]) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def parse_slot_time(value: str) -> time:
    validate_slot_time(value)
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def end_of_unit(start_time: str) -> str:
    """``"10:30"`` -> ``"11:00"``; ``"23:30"`` wraps to ``"00:00"``."""
    start = parse_slot_time(start_time)
    total = (start.hour * 60 + start.minute + UNIT_MINUTES) % (24 * 60)
    return f"{total // 60:02d}:{total % 60:02d}"


def operating_window_times(
    start_hour: Optional[int] = None, end_hour: Optional[int] = None
) -> List[str]:
    """Unit starts used for slot generation, e.g. 08:00 .. 21:30 for an 8-22 window."""
    first = settings.slot_window_start_hour if start_hour is None else start_hour
    last = settings.slot_window_end_hour if end_hour is None else end_hour
    return [
        f"{minutes // 60:02d}:{minutes % 60:02d}"
        for minutes in range(first * 60, last * 60, UNIT_MINUTES)
    ]


def day_of_week(day: date) -> int:
    """Sunday-based weekday index (Sunday=0 .. Saturday=6)."""
    return (day.weekday() + 1) % 7


def get_timezone(name: str) -> pytz.BaseTzInfo:
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError as exc:
        raise ValidationException(
            f"Unknown timezone {name!r}", code="INVALID_TIMEZONE", details={"timezone": name}
        ) from exc


def ensure_utc(value: datetime) -> datetime:
    """Aware UTC copy of ``value``; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz: Optional[TzInfo]) -> datetime:
    utc_value = ensure_utc(value)
    if tz is None:
        return utc_value
    return utc_value.astimezone(tz)


def unit_start_datetime(day: date, start_time: str, tz: Optional[TzInfo] = None) -> datetime:
    """UTC instant at which the unit ``(day, start_time)`` begins on the tutor's clock."""
    naive = datetime.combine(day, parse_slot_time(start_time))
    if tz is None:
        return naive.replace(tzinfo=timezone.utc)
    if isinstance(tz, pytz.BaseTzInfo):
        local = tz.normalize(tz.localize(naive))
    else:
        local = naive.replace(tzinfo=tz)
    return local.astimezone(timezone.utc)


def is_on_grid(value: datetime, tz: Optional[TzInfo] = None) -> bool:
    local = to_local(value, tz)
    return local.minute % UNIT_MINUTES == 0 and local.second == 0 and local.microsecond == 0


def units_spanned(
    start: datetime, duration_mins: int, tz: Optional[TzInfo] = None
) -> List[UnitKey]:
    """
    Ordered unit keys covered by ``[start, start + duration)``.

    ``units_spanned(start, 90)`` always yields three keys, the first one
    being ``start`` itself.
    """
    validate_duration(duration_mins)
    origin = ensure_utc(start)
    keys: List[UnitKey] = []
    for index in range(duration_mins // UNIT_MINUTES):
        local = to_local(origin + UNIT * index, tz)
        keys.append(UnitKey(local.date(), format_slot_time(local)))
    return keys


def date_range(start: date, end: date) -> Iterator[date]:
    """Every calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
