# backend/tests/unit/services/test_refund_policy.py
"""Cancellation refund policy rules."""

from decimal import Decimal

import pytest

from tutorbook.core.enums import CancelledBy
from tutorbook.core.exceptions import ValidationException
from tutorbook.services.refund_policy import evaluate_refund, refund_percent


class TestRefundPercent:
    def test_tutor_cancellation_always_full(self):
        assert refund_percent(CancelledBy.TUTOR, 0.5, 48, 0) == 100

    def test_system_cancellation_always_full(self):
        decision = evaluate_refund(CancelledBy.SYSTEM, 1, 24, 25)
        assert decision.is_full
        assert decision.policy_basis == "system_cancelled"

    def test_participant_with_enough_notice(self):
        assert refund_percent(CancelledBy.PARTICIPANT, 24, 24, 25) == 100
        assert refund_percent(CancelledBy.PARTICIPANT, 72.5, 48, 0) == 100

    @pytest.mark.parametrize("late_percent", [0, 25, 50, 75, 100])
    def test_participant_late_gets_tutor_percentage(self, late_percent):
        assert refund_percent(CancelledBy.PARTICIPANT, 2, 24, late_percent) == late_percent

    def test_raw_string_party_is_accepted(self):
        assert refund_percent("participant", 2, 12, 75) == 75

    @pytest.mark.parametrize("late_percent", [10, -25, 101])
    def test_invalid_late_percent(self, late_percent):
        with pytest.raises(ValidationException) as exc_info:
            refund_percent(CancelledBy.PARTICIPANT, 2, 24, late_percent)
        assert exc_info.value.code == "INVALID_REFUND_PERCENT"

    def test_invalid_notice_hours(self):
        with pytest.raises(ValidationException) as exc_info:
            refund_percent(CancelledBy.PARTICIPANT, 2, 36, 50)
        assert exc_info.value.code == "INVALID_NOTICE_HOURS"


class TestRefundAmount:
    def test_partial_amount_rounds_to_cent(self):
        decision = evaluate_refund(CancelledBy.PARTICIPANT, 1, 24, 25)
        assert decision.amount_for(Decimal("33.33")) == Decimal("8.33")

    def test_full_amount(self):
        decision = evaluate_refund(CancelledBy.TUTOR, 1, 24, 25)
        assert decision.amount_for(Decimal("40.00")) == Decimal("40.00")
