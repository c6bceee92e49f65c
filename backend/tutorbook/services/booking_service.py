# backend/tutorbook/services/booking_service.py
"""
Booking Service

Validates and commits booking requests, confirms immediate-charge payments
and cancels bookings with the tutor's refund policy.

Every write runs inside ``tutor_availability_lock(tutor_id)`` and a single
database transaction, and the transaction commits before the lock is
released. Two overlapping requests for the same tutor therefore see each
other's result and cannot both pass the occupancy checks.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.enums import (
    BookingStatus,
    CancelledBy,
    GroupBookingPath,
    NotificationEvent,
    PaymentEventType,
    PaymentStatus,
    RefundStatus,
    SessionMedium,
)
from ..core.exceptions import (
    BookingConflictException,
    BusinessRuleException,
    ConflictException,
    DomainException,
    ForbiddenException,
    GroupFullException,
    NotFoundException,
    PaymentFailureException,
    SlotUnavailableException,
    ValidationException,
)
from ..core.tutor_lock import tutor_availability_lock
from ..models.booking import Booking
from ..models.tutor import Tutor
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingRequest, BookingView, CancellationView, PaymentHandoff
from ..utils.time_grid import (
    UNIT_MINUTES,
    TzInfo,
    UnitKey,
    ensure_utc,
    get_timezone,
    is_on_grid,
    units_spanned,
    validate_duration,
)
from . import pricing_service
from .availability_resolver import build_occupancy, is_unit_offered, parse_medium
from .base import BaseService
from .notification_service import NotificationService
from .payment_gateway import PaymentGateway, PaymentHandle
from .refund_policy import RefundDecision, evaluate_refund


def select_group_booking_path(tutor: Tutor) -> GroupBookingPath:
    """
    Decide whether a GROUP booking waits for quorum or is charged at once.

    The tutor's explicit ``group_booking_path`` wins. Without one, groups
    with a minimum above one participant go through quorum. A quorum path
    with nothing to wait for (minimum of one) is charged immediately.
    """
    explicit = tutor.explicit_group_path
    if explicit is GroupBookingPath.QUORUM and tutor.min_group_size <= 1:
        return GroupBookingPath.IMMEDIATE
    if explicit is not None:
        return explicit
    return GroupBookingPath.QUORUM if tutor.min_group_size > 1 else GroupBookingPath.IMMEDIATE


@dataclass(frozen=True)
class BookingResult:
    booking: Booking
    payment: PaymentHandle
    group_path: Optional[GroupBookingPath] = None

    @property
    def requires_quorum(self) -> bool:
        return self.group_path is GroupBookingPath.QUORUM

    def to_view(self) -> BookingView:
        return BookingView.model_validate(self.booking)

    def handoff(self) -> PaymentHandoff:
        return PaymentHandoff(
            reference=self.payment.reference,
            client_secret=self.payment.client_secret,
            capture=self.payment.captured,
        )


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    cancelled_by: CancelledBy
    refund_percent: int
    realized_refund_percent: int
    refund_amount: Optional[Decimal]
    refund_status: RefundStatus

    def to_view(self) -> CancellationView:
        return CancellationView(
            booking_id=self.booking.id,
            cancelled_by=self.cancelled_by,
            refund_percent=self.refund_percent,
            realized_refund_percent=self.realized_refund_percent,
            refund_amount=self.refund_amount,
            refund_status=self.refund_status,
        )


def _failure_outcome(exc: DomainException) -> str:
    if isinstance(exc, SlotUnavailableException):
        return "slot_unavailable"
    if isinstance(exc, GroupFullException):
        return "group_full"
    if isinstance(exc, BookingConflictException):
        return "occupied"
    if isinstance(exc, PaymentFailureException):
        return "payment_failed"
    if isinstance(exc, ValidationException):
        return "invalid"
    if isinstance(exc, ConflictException):
        return "busy"
    return "rejected"


class BookingService(BaseService):
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
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_event_repository = RepositoryFactory.create_payment_event_repository(db)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create_booking(self, request: BookingRequest) -> BookingResult:
        return self.try_book(
            tutor_id=request.tutor_id,
            student_id=request.student_id,
            medium=SessionMedium(request.medium),
            start=request.start,
            duration_mins=request.duration_mins,
            subject=request.subject,
            level=request.level,
        )

    @BaseService.measure_operation("try_book")
    def try_book(
        self,
        tutor_id: str,
        student_id: str,
        medium: SessionMedium,
        start: datetime,
        duration_mins: int,
        subject: str,
        level: str,
    ) -> BookingResult:
        """
        Validate a request against current availability and commit it.

        GROUP bookings on the quorum path are created RESERVED with an
        uncaptured authorization; everything else is created PENDING with an
        automatically captured payment the caller completes out of band.

        Raises:
            ValidationException: bad duration, medium or start time
            NotFoundException: unknown or inactive tutor
            SlotUnavailableException: a spanned unit is not offered
            BookingConflictException: overlaps an incompatible booking
            GroupFullException: a spanned unit already holds a full group
            TutorLockTimeoutException: the tutor's calendar stayed locked
            PaymentFailureException: authorization failed; nothing was saved
        """
        medium_label = str(getattr(medium, "value", medium))
        try:
            medium = parse_medium(medium)
            validate_duration(duration_mins)
            start_utc = ensure_utc(start)

            with tutor_availability_lock(tutor_id):
                result = self._book_locked(
                    tutor_id, student_id, medium, start_utc, duration_mins, subject, level
                )
        except DomainException as exc:
            prometheus_metrics.record_booking_attempt(medium_label, _failure_outcome(exc))
            self.logger.info(
                "Booking rejected",
                extra={
                    "tutor_id": tutor_id,
                    "student_id": student_id,
                    "medium": medium_label,
                    "code": exc.code,
                },
            )
            raise

        prometheus_metrics.record_booking_attempt(medium.value, "created")
        booking = result.booking
        self.log_operation(
            "booking_created",
            booking_id=booking.id,
            tutor_id=tutor_id,
            medium=medium.value,
            status=booking.status,
        )
        tutor = booking.tutor
        payload = self._booking_payload(booking)
        self.notification_service.notify(student_id, NotificationEvent.BOOKING_CREATED, payload)
        if tutor is not None:
            self.notification_service.notify(
                tutor.user_id, NotificationEvent.BOOKING_CREATED, payload
            )
        return result

    def _book_locked(
        self,
        tutor_id: str,
        student_id: str,
        medium: SessionMedium,
        start: datetime,
        duration_mins: int,
        subject: str,
        level: str,
    ) -> BookingResult:
        handle: Optional[PaymentHandle] = None
        try:
            with self.transaction():
                tutor = self.tutor_repository.get_active(tutor_id, for_update=True)
                if tutor is None:
                    raise NotFoundException(
                        "Tutor not found", code="TUTOR_NOT_FOUND", details={"tutor_id": tutor_id}
                    )
                tz = get_timezone(tutor.timezone)
                self._validate_start(start, tz)

                end = start + timedelta(minutes=duration_mins)
                units = units_spanned(start, duration_mins, tz)
                self._check_units_offered(tutor, medium, units)
                self._check_occupancy(
                    tutor, medium, units, self.booking_repository.get_overlapping(tutor.id, start, end), tz
                )

                quote = pricing_service.quote(tutor, medium, duration_mins)
                group_path = select_group_booking_path(tutor) if medium.is_group else None
                reserve = group_path is GroupBookingPath.QUORUM

                booking = self.booking_repository.create(
                    tutor_id=tutor.id,
                    student_id=student_id,
                    subject=subject,
                    level=level,
                    medium=medium.value,
                    scheduled_at=start,
                    ends_at=end,
                    duration_mins=duration_mins,
                    hourly_rate=quote.hourly_rate,
                    price=quote.price,
                    platform_fee=quote.platform_fee,
                    status=(BookingStatus.RESERVED if reserve else BookingStatus.PENDING).value,
                    payment_status=PaymentStatus.PENDING.value,
                    created_at=self.clock.now(),
                )

                handle = self.payment_gateway.authorize(
                    booking_id=booking.id,
                    amount_cents=quote.price_cents,
                    capture=not reserve,
                    idempotency_key=f"authorize:{booking.id}",
                )
                booking.payment_reference = handle.reference
                if reserve:
                    booking.payment_status = PaymentStatus.AUTHORIZED.value
                self.payment_event_repository.record(
                    booking.id,
                    PaymentEventType.AUTHORIZED,
                    {
                        "payment_reference": handle.reference,
                        "amount_cents": handle.amount_cents,
                        "capture": not reserve,
                    },
                )
        except Exception:
            if handle is not None:
                self._release_orphaned_authorization(handle)
            raise

        return BookingResult(booking=booking, payment=handle, group_path=group_path)

    def _validate_start(self, start: datetime, tz: TzInfo) -> None:
        if start <= self.clock.now():
            raise ValidationException(
                "Booking start must be in the future",
                code="START_IN_PAST",
                details={"start": start.isoformat()},
            )
        if not is_on_grid(start, tz):
            raise ValidationException(
                f"Booking start must fall on a {UNIT_MINUTES}-minute boundary",
                code="START_OFF_GRID",
                details={"start": start.isoformat()},
            )

    def _check_units_offered(
        self, tutor: Tutor, medium: SessionMedium, units: Sequence[UnitKey]
    ) -> None:
        template_keys = self.availability_repository.get_template_keys(tutor.id, medium.value)
        override_map = self.availability_repository.get_override_map(
            tutor.id, medium.value, units[0].date, units[-1].date
        )
        for unit in units:
            if not is_unit_offered(unit, template_keys, override_map):
                raise SlotUnavailableException(
                    unit.date.isoformat(), unit.start_time, medium.value
                )

    def _check_occupancy(
        self,
        tutor: Tutor,
        medium: SessionMedium,
        units: Sequence[UnitKey],
        overlapping: List[Booking],
        tz: TzInfo,
    ) -> None:
        if not medium.is_group:
            if overlapping:
                raise BookingConflictException(
                    details={"conflicting_booking_ids": [b.id for b in overlapping]}
                )
            return

        one_to_one = [b for b in overlapping if b.medium != SessionMedium.GROUP.value]
        if one_to_one:
            raise BookingConflictException(
                "This time overlaps a one-to-one session",
                details={"conflicting_booking_ids": [b.id for b in one_to_one]},
            )

        occupancy = build_occupancy(overlapping, tz)
        for unit in units:
            slot = occupancy.get(unit)
            if slot is not None and slot.group_count >= tutor.max_group_size:
                raise GroupFullException(
                    unit.date.isoformat(), unit.start_time, int(tutor.max_group_size)
                )

    def _release_orphaned_authorization(self, handle: PaymentHandle) -> None:
        """Void an authorization whose booking was rolled back."""
        try:
            self.payment_gateway.void(handle.reference, idempotency_key=f"void:{handle.reference}")
        except PaymentFailureException as exc:
            self.logger.error(
                "Could not void authorization for rolled back booking",
                extra={"payment_reference": handle.reference, "error": exc.message},
            )

    # ------------------------------------------------------------------
    # Payment confirmation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("confirm_payment")
    def confirm_payment(self, booking_id: str, payment_reference: Optional[str] = None) -> Booking:
        """
        Mark an immediate-charge booking paid once the provider reports capture.

        Idempotent: confirming an already CONFIRMED booking is a no-op. A
        capture reported after cancellation refunds what the cancellation owed.
        """
        with self.transaction():
            booking = self.booking_repository.get_for_update(booking_id)
            if booking is None:
                raise NotFoundException(
                    "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
                )
            if booking.status == BookingStatus.CONFIRMED.value:
                return booking
            if (
                booking.status == BookingStatus.CANCELLED.value
                and booking.payment_status != PaymentStatus.PENDING.value
            ):
                return booking
            if booking.status == BookingStatus.CANCELLED.value:
                self._settle_late_capture(booking)
                return booking
            if booking.status != BookingStatus.PENDING.value:
                raise BusinessRuleException(
                    f"Cannot confirm a {booking.status} booking",
                    code="INVALID_BOOKING_STATE",
                    details={"booking_id": booking.id, "status": booking.status},
                )
            if (
                payment_reference
                and booking.payment_reference
                and payment_reference != booking.payment_reference
            ):
                raise ValidationException(
                    "Payment reference does not match booking",
                    code="PAYMENT_REFERENCE_MISMATCH",
                    details={"booking_id": booking.id},
                )
            booking.confirm(self.clock.now())
            self.payment_event_repository.record(
                booking.id,
                PaymentEventType.CAPTURED,
                {"payment_reference": booking.payment_reference, "source": "provider_confirmation"},
            )

        self.log_operation("booking_confirmed", booking_id=booking.id)
        self.notification_service.notify(
            booking.student_id, NotificationEvent.BOOKING_CONFIRMED, self._booking_payload(booking)
        )
        return booking

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(
        self, booking_id: str, actor_id: str, reason: Optional[str] = None
    ) -> CancellationResult:
        """
        Cancel a booking on behalf of its student or its tutor.

        Captured payments are refunded per the tutor's policy; held
        authorizations are released. A failed refund still cancels the
        booking but records a realized refund of 0%.
        """
        existing = self.booking_repository.get_by_id(booking_id)
        if existing is None:
            raise NotFoundException(
                "Booking not found", code="BOOKING_NOT_FOUND", details={"booking_id": booking_id}
            )

        with tutor_availability_lock(existing.tutor_id):
            with self.transaction():
                booking = self.booking_repository.get_for_update(booking_id)
                tutor = self.tutor_repository.get_by_id(booking.tutor_id)
                cancelled_by = self._cancelling_party(booking, tutor, actor_id)
                if booking.is_terminal:
                    raise BusinessRuleException(
                        f"Booking is already {booking.status}",
                        code="BOOKING_ALREADY_FINAL",
                        details={"booking_id": booking.id, "status": booking.status},
                    )

                now = self.clock.now()
                hours_until_start = (booking.scheduled_at - now).total_seconds() / 3600
                decision = evaluate_refund(
                    cancelled_by,
                    hours_until_start,
                    tutor.cancellation_notice_hours,
                    tutor.late_cancellation_refund_percent,
                )

                booking.refund_percent = decision.percent
                if booking.payment_status == PaymentStatus.PAID.value:
                    self._refund_on_cancel(booking, decision.percent, decision.amount_for(booking.price))
                else:
                    self._release_on_cancel(booking, decision)

                booking.cancel(at=now, cancelled_by=cancelled_by, user_id=actor_id, reason=reason)

        result = CancellationResult(
            booking=booking,
            cancelled_by=cancelled_by,
            refund_percent=decision.percent,
            realized_refund_percent=booking.realized_refund_percent or 0,
            refund_amount=booking.refund_amount,
            refund_status=RefundStatus(booking.refund_status),
        )
        self.log_operation(
            "booking_cancelled",
            booking_id=booking.id,
            cancelled_by=cancelled_by.value,
            refund_percent=result.refund_percent,
            realized_refund_percent=result.realized_refund_percent,
        )
        payload = self._booking_payload(booking)
        payload.update(
            {
                "cancelled_by": cancelled_by.value,
                "refund_percent": result.realized_refund_percent,
                "refund_amount": result.refund_amount,
            }
        )
        self.notification_service.notify(
            booking.student_id, NotificationEvent.BOOKING_CANCELLED, payload
        )
        self.notification_service.notify(tutor.user_id, NotificationEvent.BOOKING_CANCELLED, payload)
        return result

    def _cancelling_party(self, booking: Booking, tutor: Tutor, actor_id: str) -> CancelledBy:
        if actor_id == booking.student_id:
            return CancelledBy.PARTICIPANT
        if tutor is not None and actor_id == tutor.user_id:
            return CancelledBy.TUTOR
        raise ForbiddenException(
            "Only the student or the tutor can cancel this booking",
            code="CANCEL_NOT_ALLOWED",
            details={"booking_id": booking.id},
        )

    def _refund_on_cancel(self, booking: Booking, percent: int, amount: Decimal) -> None:
        booking.realized_refund_percent = 0
        if percent == 0:
            booking.refund_amount = Decimal("0.00")
            booking.refund_status = RefundStatus.NONE.value
            return

        full = percent == 100
        try:
            refunded_cents = self.payment_gateway.refund(
                booking.payment_reference,
                None if full else pricing_service.to_cents(amount),
                idempotency_key=f"cancel-refund:{booking.id}",
            )
        except PaymentFailureException as exc:
            booking.refund_status = RefundStatus.FAILED.value
            booking.refund_amount = Decimal("0.00")
            self.payment_event_repository.record(
                booking.id,
                PaymentEventType.REFUND_FAILED,
                {"percent": percent, "error": exc.message, "retryable": exc.retryable},
            )
            self.logger.error(
                "Refund failed during cancellation",
                extra={"booking_id": booking.id, "percent": percent, "error": exc.message},
            )
            return

        booking.realized_refund_percent = percent
        booking.refund_amount = pricing_service.quantize_money(amount)
        booking.refund_status = (RefundStatus.FULL if full else RefundStatus.PARTIAL).value
        booking.payment_status = (
            PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED
        ).value
        self.payment_event_repository.record(
            booking.id,
            PaymentEventType.REFUNDED,
            {"percent": percent, "amount_cents": refunded_cents},
        )

    def _release_on_cancel(self, booking: Booking, decision: RefundDecision) -> None:
        """
        Nothing was captured: drop the authorization or unpaid intent.

        An immediate-charge intent that will not void may already have been
        paid outside our flow, so the policy refund is attempted instead.
        """
        booking.refund_status = RefundStatus.NONE.value
        if not booking.payment_reference:
            return
        try:
            self.payment_gateway.void(
                booking.payment_reference, idempotency_key=f"cancel-void:{booking.id}"
            )
        except PaymentFailureException as exc:
            self.payment_event_repository.record(
                booking.id,
                PaymentEventType.VOID_FAILED,
                {"error": exc.message, "retryable": exc.retryable},
            )
            self.logger.error(
                "Could not release authorization on cancellation",
                extra={"booking_id": booking.id, "error": exc.message},
            )
            if booking.status == BookingStatus.PENDING.value:
                self._refund_on_cancel(
                    booking, decision.percent, decision.amount_for(booking.price)
                )
            return
        booking.payment_status = PaymentStatus.VOIDED.value
        self.payment_event_repository.record(booking.id, PaymentEventType.VOIDED, {})

    def _settle_late_capture(self, booking: Booking) -> None:
        percent = booking.refund_percent or 0
        booking.payment_status = PaymentStatus.PAID.value
        self.payment_event_repository.record(
            booking.id,
            PaymentEventType.CAPTURED,
            {
                "payment_reference": booking.payment_reference,
                "source": "late_provider_confirmation",
            },
        )
        decision = RefundDecision(percent=percent, policy_basis="late_capture")
        self._refund_on_cancel(booking, percent, decision.amount_for(booking.price))
        self.log_operation(
            "late_capture_settled",
            booking_id=booking.id,
            refund_percent=percent,
            refund_status=booking.refund_status,
        )

    @staticmethod
    def _booking_payload(booking: Booking) -> dict:
        return {
            "booking_id": booking.id,
            "tutor_id": booking.tutor_id,
            "medium": booking.medium,
            "scheduled_at": booking.scheduled_at,
            "duration_mins": booking.duration_mins,
            "status": booking.status,
            "price": booking.price,
        }
