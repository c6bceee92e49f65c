# backend/tests/unit/services/test_group_quorum_service.py
"""Quorum resolution of group sessions at the cutoff horizon."""

from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from tests._utils.builders import MONDAY, NEXT_MONDAY, add_weekly, at, create_tutor
from tutorbook.core.enums import (
    BookingStatus,
    CancelledBy,
    PaymentEventType,
    PaymentStatus,
    RefundStatus,
    SessionMedium,
)
from tutorbook.core.exceptions import TutorLockLostException
from tutorbook.core.ulid_helper import generate_ulid
from tutorbook.models import Booking, BookingPaymentEvent
from tutorbook.monitoring.prometheus_metrics import REGISTRY
from tutorbook.services.booking_service import BookingService
from tutorbook.services.group_quorum_service import QUORUM_NOT_MET_REASON, GroupQuorumService

T = at(NEXT_MONDAY, "10:00")


@pytest.fixture
def group_tutor(db):
    tutor = create_tutor(db, min_group_size=3, max_group_size=6)
    add_weekly(db, tutor, MONDAY, ["10:00", "10:30"], SessionMedium.GROUP)
    return tutor


@pytest.fixture
def booking_service(db, gateway, notifier, clock):
    return BookingService(db, gateway, notification_service=notifier, clock=clock)


@pytest.fixture
def quorum(db, gateway, notifier, clock):
    return GroupQuorumService(db, gateway, notification_service=notifier, clock=clock)


def reserve(booking_service, tutor, count, start=T):
    return [
        booking_service.try_book(
            tutor_id=tutor.id,
            student_id=generate_ulid(),
            medium=SessionMedium.GROUP,
            start=start,
            duration_mins=30,
            subject="Chemistry",
            level="Leaving Cert",
        ).booking
        for _ in range(count)
    ]


def reload(db, bookings):
    db.expire_all()
    return [db.get(Booking, b.id) for b in bookings]


class TestQuorumMissed:
    def test_short_group_is_cancelled_without_charge(
        self, db, quorum, booking_service, gateway, clock, dispatcher, group_tutor
    ):
        bookings = reserve(booking_service, group_tutor, 2)
        clock.set(T - timedelta(hours=24) + timedelta(minutes=1))

        summary = quorum.run_once()

        assert summary.groups_evaluated == 1
        assert summary.groups_cancelled == 1
        assert summary.voided == 2
        assert summary.captured == 0
        for booking in reload(db, bookings):
            assert booking.status == BookingStatus.CANCELLED.value
            assert booking.payment_status == PaymentStatus.VOIDED.value
            assert booking.cancelled_by == CancelledBy.SYSTEM.value
            assert booking.cancellation_reason == QUORUM_NOT_MET_REASON
            assert dispatcher.kinds_for(booking.student_id)[-1] == "group_session_cancelled"
        assert gateway.count("capture") == 0
        assert gateway.count("void") == 2
        assert dispatcher.kinds_for(group_tutor.user_id)[-1] == "group_session_cancelled"

    def test_paid_seats_are_refunded_in_full(self, db, quorum, gateway, clock, group_tutor):
        paid = _group_row(db, group_tutor, BookingStatus.CONFIRMED, PaymentStatus.PAID)
        held = _group_row(db, group_tutor, BookingStatus.RESERVED, PaymentStatus.AUTHORIZED)
        clock.set(T - timedelta(hours=2))

        summary = quorum.run_once()

        paid, held = reload(db, [paid, held])
        assert summary.refunded == 1 and summary.voided == 1
        assert paid.status == BookingStatus.CANCELLED.value
        assert paid.payment_status == PaymentStatus.REFUNDED.value
        assert paid.refund_status == RefundStatus.FULL.value
        assert paid.realized_refund_percent == 100
        assert paid.refund_amount == Decimal("10.00")
        assert held.payment_status == PaymentStatus.VOIDED.value


class TestQuorumReached:
    def test_full_group_is_captured_exactly_once(
        self, db, quorum, booking_service, gateway, clock, dispatcher, group_tutor
    ):
        bookings = reserve(booking_service, group_tutor, 3)
        clock.set(T - timedelta(hours=24) + timedelta(minutes=1))

        summary = quorum.run_once()

        assert summary.groups_confirmed == 1
        assert summary.captured == 3
        for booking in reload(db, bookings):
            assert booking.status == BookingStatus.CONFIRMED.value
            assert booking.payment_status == PaymentStatus.PAID.value
            assert dispatcher.kinds_for(booking.student_id)[-1] == "group_session_confirmed"
        captured_refs = [ref for _, ref, _ in gateway.calls_for("capture")]
        assert sorted(captured_refs) == sorted(b.payment_reference for b in bookings)

        # Running again changes nothing
        clock.advance(minutes=15)
        second = quorum.run_once()
        third = quorum.run_once()

        assert second.groups_evaluated == 0 and third.groups_evaluated == 0
        assert gateway.count("capture") == 3
        assert gateway.count("void") == 0
        assert gateway.count("refund") == 0

    def test_groups_outside_horizon_are_left_alone(
        self, db, quorum, booking_service, gateway, clock, group_tutor
    ):
        bookings = reserve(booking_service, group_tutor, 2)
        clock.set(T - timedelta(hours=25))

        summary = quorum.run_once()

        assert summary.groups_evaluated == 0
        assert all(b.status == BookingStatus.RESERVED.value for b in reload(db, bookings))
        assert gateway.count("void") == 0

    def test_slot_groups_are_resolved_independently(
        self, db, quorum, booking_service, clock, group_tutor
    ):
        early = reserve(booking_service, group_tutor, 3, start=T)
        late = reserve(booking_service, group_tutor, 1, start=at(NEXT_MONDAY, "10:30"))
        clock.set(T - timedelta(hours=12))

        summary = quorum.run_once()

        assert summary.groups_evaluated == 2
        assert summary.groups_confirmed == 1
        assert summary.groups_cancelled == 1
        assert {b.status for b in reload(db, early)} == {BookingStatus.CONFIRMED.value}
        assert {b.status for b in reload(db, late)} == {BookingStatus.CANCELLED.value}


class TestPaymentFailures:
    def test_failed_capture_is_retried_next_tick(
        self, db, quorum, booking_service, gateway, clock, group_tutor
    ):
        bookings = reserve(booking_service, group_tutor, 3)
        clock.set(T - timedelta(hours=23))
        gateway.fail_on.add("capture")
        retries_before = _outcome_count("capture_retry")

        summary = quorum.run_once()

        assert summary.failures == 3
        assert summary.captured == 0
        assert summary.groups_confirmed == 0
        assert _outcome_count("capture_retry") == retries_before + 1
        assert all(b.status == BookingStatus.RESERVED.value for b in reload(db, bookings))
        failed_events = (
            db.query(BookingPaymentEvent)
            .filter_by(event_type=PaymentEventType.CAPTURE_FAILED.value)
            .count()
        )
        assert failed_events == 3

        gateway.fail_on.clear()
        clock.advance(minutes=15)
        retry = quorum.run_once()

        assert retry.captured == 3
        assert retry.groups_confirmed == 1
        assert all(b.status == BookingStatus.CONFIRMED.value for b in reload(db, bookings))

    def test_failed_refund_is_marked_pending_and_retried(
        self, db, quorum, gateway, clock, group_tutor
    ):
        paid = _group_row(db, group_tutor, BookingStatus.CONFIRMED, PaymentStatus.PAID)
        _group_row(db, group_tutor, BookingStatus.RESERVED, PaymentStatus.AUTHORIZED)
        clock.set(T - timedelta(hours=2))
        gateway.fail_on.add("refund")

        first = quorum.run_once()

        (paid,) = reload(db, [paid])
        assert first.failures == 1
        assert paid.status == BookingStatus.CONFIRMED.value
        assert paid.payment_status == PaymentStatus.REFUND_PENDING.value

        gateway.fail_on.clear()
        clock.advance(minutes=15)
        second = quorum.run_once()

        (paid,) = reload(db, [paid])
        assert second.refunded == 1
        assert paid.status == BookingStatus.CANCELLED.value
        assert paid.payment_status == PaymentStatus.REFUNDED.value
        assert gateway.count("refund") == 2

    def test_one_broken_group_does_not_stop_the_run(
        self, db, quorum, booking_service, clock, group_tutor
    ):
        reserve(booking_service, group_tutor, 3, start=T)
        healthy = reserve(booking_service, group_tutor, 3, start=at(NEXT_MONDAY, "10:30"))
        clock.set(T - timedelta(hours=12))

        resolve = quorum._resolve_group

        def flaky(key, now):
            if key[1] == T:
                raise RuntimeError("lost connection")
            return resolve(key, now)

        quorum._resolve_group = flaky
        summary = quorum.run_once()

        assert summary.failures == 1
        assert summary.groups_confirmed == 1
        assert {b.status for b in reload(db, healthy)} == {BookingStatus.CONFIRMED.value}


class TestLockDuringResolution:
    @pytest.fixture
    def handle(self):
        handle = MagicMock()

        @contextmanager
        def fake_lock(tutor_id):
            yield handle

        with patch("tutorbook.services.group_quorum_service.tutor_availability_lock", fake_lock):
            yield handle

    def test_lock_is_refreshed_before_every_provider_call(
        self, quorum, booking_service, gateway, clock, group_tutor, handle
    ):
        reserve(booking_service, group_tutor, 3)
        clock.set(T - timedelta(hours=12))

        summary = quorum.run_once()

        assert summary.captured == 3
        assert handle.refresh.call_count == gateway.count("capture") == 3

    def test_lost_lock_rolls_the_group_back_for_the_next_run(
        self, db, quorum, booking_service, gateway, clock, group_tutor, handle
    ):
        bookings = reserve(booking_service, group_tutor, 3)
        clock.set(T - timedelta(hours=12))
        handle.refresh.side_effect = [None, TutorLockLostException(group_tutor.id)]

        first = quorum.run_once()

        assert first.failures == 1
        assert first.groups_confirmed == 0
        assert gateway.count("capture") == 1
        assert {b.status for b in reload(db, bookings)} == {BookingStatus.RESERVED.value}

        handle.refresh.side_effect = None
        second = quorum.run_once()

        assert second.captured == 3
        keys = [kw["idempotency_key"] for _, _, kw in gateway.calls_for("capture")]
        assert sorted(set(keys)) == sorted(f"capture:{b.id}" for b in bookings)
        assert {b.status for b in reload(db, bookings)} == {BookingStatus.CONFIRMED.value}


def _outcome_count(outcome):
    return REGISTRY.get_sample_value("tutorbook_group_quorum_outcomes_total", {"outcome": outcome}) or 0.0


def _group_row(db, tutor, status, payment_status):
    booking = Booking(
        tutor_id=tutor.id,
        student_id=generate_ulid(),
        subject="Chemistry",
        level="Leaving Cert",
        medium=SessionMedium.GROUP.value,
        scheduled_at=T,
        ends_at=T + timedelta(minutes=30),
        duration_mins=30,
        hourly_rate=Decimal("20.00"),
        price=Decimal("10.00"),
        platform_fee=Decimal("1.50"),
        status=status.value,
        payment_status=payment_status.value,
        payment_reference=f"pi_{generate_ulid()}",
    )
    db.add(booking)
    db.commit()
    return booking
