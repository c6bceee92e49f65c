# backend/tests/unit/services/test_availability_resolver.py
"""Slot resolution from weekly template, overrides and bookings."""

from datetime import timedelta
from decimal import Decimal

import pytest

from tests._utils.builders import MONDAY, NEXT_MONDAY, NOW, add_override, add_weekly, at, create_tutor
from tutorbook.core.enums import BookingStatus, SessionMedium
from tutorbook.core.exceptions import NotFoundException, ValidationException
from tutorbook.models import Booking
from tutorbook.services.availability_resolver import AvailabilityResolver


def _book(db, tutor, medium, start, duration=30, status=BookingStatus.CONFIRMED):
    booking = Booking(
        tutor_id=tutor.id,
        student_id="student",
        subject="Maths",
        level="Leaving Cert",
        medium=medium.value,
        scheduled_at=start,
        ends_at=start + timedelta(minutes=duration),
        duration_mins=duration,
        hourly_rate=Decimal("40.00"),
        price=Decimal("20.00"),
        platform_fee=Decimal("3.00"),
        status=status.value,
    )
    db.add(booking)
    db.commit()
    return booking


@pytest.fixture
def resolver(db, clock):
    return AvailabilityResolver(db, clock=clock)


class TestResolve:
    def test_weekly_slot_on_future_monday(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert len(slots) == 1
        slot = slots[0]
        assert slot.date == NEXT_MONDAY
        assert slot.start_time == "10:00"
        assert slot.end_time == "10:30"
        assert slot.available is True
        assert slot.price == Decimal("40.00")
        assert slot.unit_price == Decimal("20.00")
        assert slot.group_spots_left is None

    def test_medium_filters_template(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.IN_PERSON)
        assert resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY) == []

    def test_override_closes_template_unit(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00", "10:30"], SessionMedium.VIDEO)
        add_override(db, tutor, NEXT_MONDAY, "10:00", SessionMedium.VIDEO, available=False)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert [s.start_time for s in slots] == ["10:30"]

    def test_override_opens_unit_without_template(self, db, resolver, tutor):
        tuesday = NEXT_MONDAY + timedelta(days=1)
        add_override(db, tutor, tuesday, "18:00", SessionMedium.VIDEO, available=True)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, tuesday)

        assert [(s.date, s.start_time) for s in slots] == [(tuesday, "18:00")]

    def test_override_for_other_medium_does_not_apply(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)
        add_override(db, tutor, NEXT_MONDAY, "10:00", SessionMedium.GROUP, available=False)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert [s.start_time for s in slots] == ["10:00"]

    def test_units_outside_operating_window_are_not_emitted(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["07:30", "22:00", "21:30"], SessionMedium.VIDEO)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert [s.start_time for s in slots] == ["21:30"]

    def test_past_units_are_skipped(self, db, resolver, tutor):
        # NOW is Monday 09:00
        add_weekly(db, tutor, MONDAY, ["08:30", "09:00", "09:30"], SessionMedium.VIDEO)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NOW.date(), NOW.date())

        assert [s.start_time for s in slots] == ["09:30"]

    def test_booked_unit_is_unavailable(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00", "10:30", "11:00"], SessionMedium.VIDEO)
        _book(db, tutor, SessionMedium.IN_PERSON, at(NEXT_MONDAY, "10:00"), duration=60)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert [(s.start_time, s.available) for s in slots] == [
            ("10:00", False),
            ("10:30", False),
            ("11:00", True),
        ]

    def test_cancelled_booking_frees_unit(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)
        _book(db, tutor, SessionMedium.VIDEO, at(NEXT_MONDAY, "10:00"), status=BookingStatus.CANCELLED)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert slots[0].available is True

    def test_group_spots(self, db, resolver):
        tutor = create_tutor(db, max_group_size=3)
        add_weekly(db, tutor, MONDAY, ["10:00", "10:30"], SessionMedium.GROUP)
        _book(db, tutor, SessionMedium.GROUP, at(NEXT_MONDAY, "10:00"), status=BookingStatus.RESERVED)
        _book(db, tutor, SessionMedium.GROUP, at(NEXT_MONDAY, "10:00"), status=BookingStatus.RESERVED)

        slots = resolver.resolve(tutor.id, SessionMedium.GROUP, NEXT_MONDAY, NEXT_MONDAY)

        first, second = slots
        assert first.available is True
        assert (first.group_spots_left, first.group_spots_total) == (1, 3)
        assert (second.group_spots_left, second.group_spots_total) == (3, 3)
        assert first.price == Decimal("20.00")
        assert first.unit_price == Decimal("10.00")

    def test_full_group_is_unavailable(self, db, resolver):
        tutor = create_tutor(db, max_group_size=2)
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.GROUP)
        for _ in range(2):
            _book(db, tutor, SessionMedium.GROUP, at(NEXT_MONDAY, "10:00"))

        slots = resolver.resolve(tutor.id, SessionMedium.GROUP, NEXT_MONDAY, NEXT_MONDAY)

        assert slots[0].available is False
        assert slots[0].group_spots_left is None

    def test_one_to_one_booking_blocks_group(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.GROUP)
        _book(db, tutor, SessionMedium.VIDEO, at(NEXT_MONDAY, "10:00"))

        slots = resolver.resolve(tutor.id, SessionMedium.GROUP, NEXT_MONDAY, NEXT_MONDAY)

        assert slots[0].available is False

    def test_group_booking_blocks_one_to_one(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)
        _book(db, tutor, SessionMedium.GROUP, at(NEXT_MONDAY, "10:00"), status=BookingStatus.RESERVED)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert slots[0].available is False

    def test_default_range_starts_today(self, db, resolver, tutor):
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO)

        assert slots[0].date == NOW.date()
        assert {s.date.weekday() for s in slots} == {0}
        assert len(slots) == 5  # Mondays in the next 30 days, today included

    def test_local_time_drives_offset_tutors(self, db, resolver):
        tutor = create_tutor(db, timezone="America/New_York")
        add_weekly(db, tutor, MONDAY, ["10:00"], SessionMedium.VIDEO)
        # 15:00 UTC is 10:00 EST
        _book(db, tutor, SessionMedium.VIDEO, at(NEXT_MONDAY, "15:00"))

        slots = resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NEXT_MONDAY)

        assert [(s.start_time, s.available) for s in slots] == [("10:00", False)]


class TestResolveErrors:
    def test_unknown_tutor(self, resolver):
        with pytest.raises(NotFoundException):
            resolver.resolve("01HZZZZZZZZZZZZZZZZZZZZZZZ", SessionMedium.VIDEO)

    def test_inactive_tutor(self, db, resolver):
        tutor = create_tutor(db, is_active=False)
        with pytest.raises(NotFoundException):
            resolver.resolve(tutor.id, SessionMedium.VIDEO)

    def test_unknown_medium(self, resolver, tutor):
        with pytest.raises(ValidationException) as exc_info:
            resolver.resolve(tutor.id, "CARRIER_PIGEON")
        assert exc_info.value.code == "INVALID_MEDIUM"

    def test_reversed_range(self, resolver, tutor):
        with pytest.raises(ValidationException):
            resolver.resolve(tutor.id, SessionMedium.VIDEO, NEXT_MONDAY, NOW.date())

    def test_range_too_long(self, resolver, tutor):
        with pytest.raises(ValidationException) as exc_info:
            resolver.resolve(
                tutor.id, SessionMedium.VIDEO, NOW.date(), NOW.date() + timedelta(days=200)
            )
        assert exc_info.value.code == "DATE_RANGE_TOO_LONG"
