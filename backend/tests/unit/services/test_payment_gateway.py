# backend/tests/unit/services/test_payment_gateway.py
"""StripePaymentGateway against a patched Stripe SDK."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from tutorbook.core.exceptions import PaymentFailureException
from tutorbook.services.payment_gateway import StripePaymentGateway


@pytest.fixture
def gateway(monkeypatch):
    # The gateway configures the SDK globally; restore it after each test
    monkeypatch.setattr(stripe, "api_key", None)
    monkeypatch.setattr(stripe, "default_http_client", None, raising=False)
    monkeypatch.setattr(stripe, "max_network_retries", 0, raising=False)
    return StripePaymentGateway(api_key="sk_test_123", currency="eur")


def test_unconfigured_gateway_refuses_calls():
    gateway = StripePaymentGateway(api_key="")

    with pytest.raises(PaymentFailureException) as exc_info:
        gateway.authorize(booking_id="b1", amount_cents=1000, capture=True)

    assert exc_info.value.retryable is False
    assert exc_info.value.operation == "authorize"


@pytest.mark.parametrize("capture,capture_method", [(True, "automatic"), (False, "manual")])
def test_authorize_picks_capture_method(gateway, capture, capture_method):
    intent = SimpleNamespace(id="pi_123", status="requires_capture", client_secret="pi_123_secret")
    with patch("stripe.PaymentIntent.create", return_value=intent) as create:
        handle = gateway.authorize(
            booking_id="b1", amount_cents=2500, capture=capture, idempotency_key="authorize:b1"
        )

    kwargs = create.call_args.kwargs
    assert kwargs["capture_method"] == capture_method
    assert kwargs["amount"] == 2500
    assert kwargs["currency"] == "eur"
    assert kwargs["idempotency_key"] == "authorize:b1"
    assert kwargs["metadata"]["booking_id"] == "b1"
    assert handle.reference == "pi_123"
    assert handle.captured is capture
    assert handle.client_secret == "pi_123_secret"


def test_capture_returns_amount_received(gateway):
    with patch(
        "stripe.PaymentIntent.capture", return_value=SimpleNamespace(amount_received=1500)
    ) as capture:
        assert gateway.capture("pi_1", idempotency_key="capture:b1") == 1500

    capture.assert_called_once_with("pi_1", idempotency_key="capture:b1")


def test_void_cancels_the_intent(gateway):
    with patch("stripe.PaymentIntent.cancel") as cancel:
        gateway.void("pi_1", idempotency_key="void:b1")

    cancel.assert_called_once_with("pi_1", idempotency_key="void:b1")


def test_partial_refund_passes_amount(gateway):
    with patch("stripe.Refund.create", return_value=SimpleNamespace(amount=500)) as create:
        assert gateway.refund("pi_1", 500, idempotency_key="cancel-refund:b1") == 500

    create.assert_called_once_with(
        idempotency_key="cancel-refund:b1", payment_intent="pi_1", amount=500
    )


def test_full_refund_omits_amount(gateway):
    with patch("stripe.Refund.create", return_value=SimpleNamespace(amount=4000)) as create:
        assert gateway.refund("pi_1") == 4000

    assert "amount" not in create.call_args.kwargs
    assert create.call_args.kwargs["idempotency_key"] == "refund:pi_1:full"


def test_connection_errors_are_retryable(gateway):
    with patch(
        "stripe.PaymentIntent.capture", side_effect=stripe.APIConnectionError("network down")
    ):
        with pytest.raises(PaymentFailureException) as exc_info:
            gateway.capture("pi_1")

    assert exc_info.value.retryable is True
    assert exc_info.value.details["payment_reference"] == "pi_1"


def test_rejections_are_not_retryable(gateway):
    error = stripe.InvalidRequestError("No such payment_intent", param="id")
    with patch("stripe.PaymentIntent.cancel", side_effect=error):
        with pytest.raises(PaymentFailureException) as exc_info:
            gateway.void("pi_missing")

    assert exc_info.value.retryable is False
    assert exc_info.value.operation == "void"
