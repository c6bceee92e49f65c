# backend/tutorbook/services/refund_policy.py
"""Cancellation refund policy."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from ..core.enums import CancelledBy
from ..core.exceptions import ValidationException
from ..models.tutor import CANCELLATION_NOTICE_HOURS_CHOICES, LATE_REFUND_PERCENT_CHOICES


@dataclass(frozen=True)
class RefundDecision:
    percent: int
    policy_basis: str

    @property
    def is_full(self) -> bool:
        return self.percent == 100

    def amount_for(self, price: Decimal) -> Decimal:
        return (Decimal(price) * self.percent / Decimal(100)).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )


def evaluate_refund(
    cancelled_by: CancelledBy,
    hours_until_start: float,
    tutor_notice_hours: int,
    tutor_late_refund_percent: int,
) -> RefundDecision:
    """
    Refund owed on cancellation of a paid booking.

    A tutor (or the platform) cancelling always refunds in full. A participant
    gets a full refund with at least ``tutor_notice_hours`` of notice and the
    tutor's chosen late percentage otherwise.
    """
    if tutor_late_refund_percent not in LATE_REFUND_PERCENT_CHOICES:
        raise ValidationException(
            f"Late cancellation refund percent must be one of {LATE_REFUND_PERCENT_CHOICES}",
            code="INVALID_REFUND_PERCENT",
            details={"late_refund_percent": tutor_late_refund_percent},
        )
    if tutor_notice_hours not in CANCELLATION_NOTICE_HOURS_CHOICES:
        raise ValidationException(
            f"Cancellation notice must be one of {CANCELLATION_NOTICE_HOURS_CHOICES} hours",
            code="INVALID_NOTICE_HOURS",
            details={"notice_hours": tutor_notice_hours},
        )

    cancelled_by = CancelledBy(cancelled_by)
    if cancelled_by is not CancelledBy.PARTICIPANT:
        return RefundDecision(100, f"{cancelled_by.value}_cancelled")
    if hours_until_start >= tutor_notice_hours:
        return RefundDecision(100, "within_notice")
    return RefundDecision(tutor_late_refund_percent, "late_cancellation")


def refund_percent(
    cancelled_by: CancelledBy,
    hours_until_start: float,
    tutor_notice_hours: int,
    tutor_late_refund_percent: int,
) -> int:
    return evaluate_refund(
        cancelled_by, hours_until_start, tutor_notice_hours, tutor_late_refund_percent
    ).percent
