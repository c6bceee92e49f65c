# backend/tutorbook/services/group_quorum_service.py
"""
Group Quorum Service

Resolves group sessions once they come inside the cutoff horizon.

Every tick selects the slot groups (tutor, start, duration) that still have
RESERVED seats starting within ``group_cutoff_hours``, plus groups with a
refund left over from an earlier failed quorum. Each group is re-read under
the tutor's availability lock and then either:

- reaches quorum: every held authorization is captured and the seat is
  CONFIRMED, or
- misses quorum: held authorizations are voided, already paid seats are
  refunded in full, and the whole group is CANCELLED by the system.

A payment failure leaves that booking where it was (a failed refund is
marked ``refund_pending``) so the next tick picks it up again. One broken
group never stops the rest of the run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import settings
from ..core.enums import (
    BookingStatus,
    CancelledBy,
    NotificationEvent,
    PaymentEventType,
    PaymentStatus,
    RefundStatus,
)
from ..core.exceptions import NotFoundException, PaymentFailureException
from ..core.tutor_lock import tutor_availability_lock
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .notification_service import NotificationService
from .payment_gateway import PaymentGateway

QUORUM_NOT_MET_REASON = "group_quorum_not_met"

SlotGroupKey = Tuple[str, datetime, int]


@dataclass
class QuorumRunSummary:
    groups_evaluated: int = 0
    groups_confirmed: int = 0
    groups_cancelled: int = 0
    captured: int = 0
    voided: int = 0
    refunded: int = 0
    failures: int = 0

    def as_dict(self) -> dict:
        return {
            "groups_evaluated": self.groups_evaluated,
            "groups_confirmed": self.groups_confirmed,
            "groups_cancelled": self.groups_cancelled,
            "captured": self.captured,
            "voided": self.voided,
            "refunded": self.refunded,
            "failures": self.failures,
        }


@dataclass
class GroupResolution:
    """What happened to one slot group during a tick."""

    key: SlotGroupKey
    tutor_user_id: str
    headcount: int
    quorum_met: bool
    captured: int = 0
    voided: int = 0
    refunded: int = 0
    payment_failures: int = 0
    capture_failures: int = 0
    notified: List[Tuple[Booking, NotificationEvent]] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        if not self.quorum_met:
            return "cancelled"
        if self.captured:
            return "confirmed"
        if self.capture_failures:
            return "capture_retry"
        if self.refunded or self.payment_failures:
            return "refund_retry"
        return "confirmed"


class GroupQuorumService(BaseService):
    def __init__(
        self,
        db: Session,
        payment_gateway: PaymentGateway,
        notification_service: Optional[NotificationService] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(db, clock)
        self.payment_gateway = payment_gateway
        self.notification_service = notification_service or NotificationService()
        self.tutor_repository = RepositoryFactory.create_tutor_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_event_repository = RepositoryFactory.create_payment_event_repository(db)

    def due_slot_groups(self, now: datetime) -> List[SlotGroupKey]:
        cutoff = now + timedelta(hours=settings.group_cutoff_hours)
        candidates = self.booking_repository.get_reserved_group_bookings_due(cutoff)
        candidates += self.booking_repository.get_group_refunds_pending()
        return sorted({booking.slot_group_key for booking in candidates})

    @BaseService.measure_operation("evaluate_group_quorum")
    def run_once(self) -> QuorumRunSummary:
        now = self.clock.now()
        keys = self.due_slot_groups(now)
        # Release the selection snapshot; each group is re-read under its lock.
        self.db.rollback()

        summary = QuorumRunSummary()
        for key in keys:
            summary.groups_evaluated += 1
            try:
                resolution = self._resolve_group(key, now)
            except Exception as exc:
                self.db.rollback()
                summary.failures += 1
                prometheus_metrics.record_group_quorum_outcome("error")
                self.logger.error(
                    "Group quorum resolution failed",
                    extra={
                        "tutor_id": key[0],
                        "scheduled_at": key[1].isoformat(),
                        "duration_mins": key[2],
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                continue

            if resolution.outcome == "confirmed":
                summary.groups_confirmed += 1
            elif resolution.outcome == "cancelled":
                summary.groups_cancelled += 1
            summary.captured += resolution.captured
            summary.voided += resolution.voided
            summary.refunded += resolution.refunded
            summary.failures += resolution.payment_failures
            prometheus_metrics.record_group_quorum_outcome(resolution.outcome)
            self._send_notifications(resolution)

        self.log_operation("group_quorum_run", **summary.as_dict())
        return summary

    def _resolve_group(self, key: SlotGroupKey, now: datetime) -> GroupResolution:
        tutor_id, scheduled_at, duration_mins = key
        with tutor_availability_lock(tutor_id) as lock:
            with self.transaction():
                tutor = self.tutor_repository.get_for_update(tutor_id)
                if tutor is None:
                    raise NotFoundException(
                        "Tutor not found", code="TUTOR_NOT_FOUND", details={"tutor_id": tutor_id}
                    )
                members = self.booking_repository.get_slot_group(
                    tutor_id, scheduled_at, duration_mins
                )
                reserved = [b for b in members if b.status == BookingStatus.RESERVED.value]
                confirmed = [b for b in members if b.status == BookingStatus.CONFIRMED.value]
                refund_pending = [
                    b for b in confirmed if b.payment_status == PaymentStatus.REFUND_PENDING.value
                ]
                paid = [b for b in confirmed if b not in refund_pending]

                headcount = len(reserved) + len(paid)
                resolution = GroupResolution(
                    key=key,
                    tutor_user_id=tutor.user_id,
                    headcount=headcount,
                    quorum_met=headcount >= tutor.min_group_size,
                )
                if resolution.quorum_met:
                    for booking in reserved:
                        lock.refresh()
                        self._capture(booking, now, resolution)
                else:
                    for booking in reserved:
                        lock.refresh()
                        self._void(booking, now, resolution)
                    for booking in paid:
                        lock.refresh()
                        self._refund_in_full(booking, now, resolution)
                for booking in refund_pending:
                    lock.refresh()
                    self._refund_in_full(booking, now, resolution)

        self.logger.info(
            "Group quorum resolved",
            extra={
                "tutor_id": tutor_id,
                "scheduled_at": scheduled_at.isoformat(),
                "duration_mins": duration_mins,
                "headcount": headcount,
                "min_group_size": tutor.min_group_size,
                "outcome": resolution.outcome,
            },
        )
        return resolution

    def _capture(self, booking: Booking, now: datetime, resolution: GroupResolution) -> None:
        try:
            captured_cents = self.payment_gateway.capture(
                booking.payment_reference, idempotency_key=f"capture:{booking.id}"
            )
        except PaymentFailureException as exc:
            resolution.payment_failures += 1
            resolution.capture_failures += 1
            self._record_failure(booking, PaymentEventType.CAPTURE_FAILED, exc)
            return
        booking.confirm(now)
        self.payment_event_repository.record(
            booking.id, PaymentEventType.CAPTURED, {"amount_cents": captured_cents}
        )
        resolution.captured += 1
        resolution.notified.append((booking, NotificationEvent.GROUP_SESSION_CONFIRMED))

    def _void(self, booking: Booking, now: datetime, resolution: GroupResolution) -> None:
        if booking.payment_reference:
            try:
                self.payment_gateway.void(
                    booking.payment_reference, idempotency_key=f"void:{booking.id}"
                )
            except PaymentFailureException as exc:
                resolution.payment_failures += 1
                self._record_failure(booking, PaymentEventType.VOID_FAILED, exc)
                return
            self.payment_event_repository.record(
                booking.id, PaymentEventType.VOIDED, {"reason": QUORUM_NOT_MET_REASON}
            )
        booking.payment_status = PaymentStatus.VOIDED.value
        booking.cancel(at=now, cancelled_by=CancelledBy.SYSTEM, reason=QUORUM_NOT_MET_REASON)
        resolution.voided += 1
        resolution.notified.append((booking, NotificationEvent.GROUP_SESSION_CANCELLED))

    def _refund_in_full(self, booking: Booking, now: datetime, resolution: GroupResolution) -> None:
        try:
            refunded_cents = self.payment_gateway.refund(
                booking.payment_reference, idempotency_key=f"quorum-refund:{booking.id}"
            )
        except PaymentFailureException as exc:
            resolution.payment_failures += 1
            booking.payment_status = PaymentStatus.REFUND_PENDING.value
            self._record_failure(booking, PaymentEventType.REFUND_FAILED, exc)
            return
        booking.payment_status = PaymentStatus.REFUNDED.value
        booking.refund_percent = 100
        booking.realized_refund_percent = 100
        booking.refund_amount = booking.price
        booking.refund_status = RefundStatus.FULL.value
        booking.cancel(at=now, cancelled_by=CancelledBy.SYSTEM, reason=QUORUM_NOT_MET_REASON)
        self.payment_event_repository.record(
            booking.id,
            PaymentEventType.REFUNDED,
            {"percent": 100, "amount_cents": refunded_cents, "reason": QUORUM_NOT_MET_REASON},
        )
        resolution.refunded += 1
        resolution.notified.append((booking, NotificationEvent.GROUP_SESSION_CANCELLED))

    def _record_failure(
        self, booking: Booking, event_type: PaymentEventType, exc: PaymentFailureException
    ) -> None:
        self.payment_event_repository.record(
            booking.id, event_type, {"error": exc.message, "retryable": exc.retryable}
        )
        self.logger.error(
            f"Group payment step failed: {event_type.value}",
            extra={"booking_id": booking.id, "error": exc.message, "retryable": exc.retryable},
        )

    def _send_notifications(self, resolution: GroupResolution) -> None:
        if not resolution.notified:
            return
        tutor_id, scheduled_at, duration_mins = resolution.key
        payload = {
            "tutor_id": tutor_id,
            "scheduled_at": scheduled_at,
            "duration_mins": duration_mins,
            "headcount": resolution.headcount,
        }
        for booking, event in resolution.notified:
            self.notification_service.notify(
                booking.student_id, event, dict(payload, booking_id=booking.id)
            )
        tutor_event = (
            NotificationEvent.GROUP_SESSION_CANCELLED
            if resolution.outcome == "cancelled"
            else NotificationEvent.GROUP_SESSION_CONFIRMED
        )
        self.notification_service.notify(resolution.tutor_user_id, tutor_event, payload)
