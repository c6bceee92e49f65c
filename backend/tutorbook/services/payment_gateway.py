# backend/tutorbook/services/payment_gateway.py
"""
Payment collaborator.

The engine only needs four primitives from the payment provider:

- ``authorize``: create a charge, either captured automatically (immediate
  charge) or held for later capture (group seat reservations)
- ``capture``: collect a held authorization
- ``void``: release a held authorization without charging
- ``refund``: return all or part of a captured charge

``StripePaymentGateway`` maps them onto Stripe PaymentIntents. Every call is
bounded by ``settings.payment_timeout_seconds``; timeouts and connection
errors surface as retryable ``PaymentFailureException``.
"""

from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional, Protocol

import stripe

from ..core.config import settings
from ..core.exceptions import PaymentFailureException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_RETRYABLE_STRIPE_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError)


@dataclass(frozen=True)
class PaymentHandle:
    reference: str
    status: str
    amount_cents: int
    captured: bool
    client_secret: Optional[str] = None


class PaymentGateway(Protocol):
    def authorize(
        self,
        *,
        booking_id: str,
        amount_cents: int,
        capture: bool,
        idempotency_key: Optional[str] = None,
    ) -> PaymentHandle: ...

    def capture(self, reference: str, *, idempotency_key: Optional[str] = None) -> int: ...

    def void(self, reference: str, *, idempotency_key: Optional[str] = None) -> None: ...

    def refund(
        self,
        reference: str,
        amount_cents: Optional[int] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> int: ...


class StripePaymentGateway:
    """Stripe PaymentIntents behind the ``PaymentGateway`` contract."""

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.currency = currency or settings.stripe_currency
        secret = api_key
        if secret is None and settings.stripe_secret_key is not None:
            secret = settings.stripe_secret_key.get_secret_value()

        self.stripe_configured = False
        if not secret:
            logger.warning("Stripe secret key not configured - payment calls will fail")
            return

        stripe.api_key = secret
        try:
            stripe.default_http_client = stripe.http_client.RequestsClient(
                timeout=settings.payment_timeout_seconds
            )
            stripe.max_network_retries = 1
        except AttributeError as exc:
            logger.warning("Could not apply Stripe HTTP client timeout: %s", exc)
        self.stripe_configured = True

    def _ensure_configured(self, operation: str) -> None:
        if not self.stripe_configured:
            raise PaymentFailureException(
                "Payment provider is not configured", operation=operation, retryable=False
            )

    def _failure(self, operation: str, exc: Exception, **context: Any) -> PaymentFailureException:
        retryable = isinstance(exc, _RETRYABLE_STRIPE_ERRORS)
        prometheus_metrics.record_payment_operation(
            operation, "timeout" if retryable else "error"
        )
        logger.error(
            f"Stripe error during {operation}: {str(exc)}",
            extra={"operation": operation, "retryable": retryable, **context},
        )
        return PaymentFailureException(
            f"Failed to {operation} payment: {str(exc)}",
            operation=operation,
            retryable=retryable,
            details=context,
        )

    def authorize(
        self,
        *,
        booking_id: str,
        amount_cents: int,
        capture: bool,
        idempotency_key: Optional[str] = None,
    ) -> PaymentHandle:
        self._ensure_configured("authorize")
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "capture_method": "automatic" if capture else "manual",
            "metadata": {"booking_id": booking_id, "platform": "tutorbook"},
        }
        try:
            pi = stripe.PaymentIntent.create(
                idempotency_key=idempotency_key or f"authorize:{booking_id}", **params
            )
        except stripe.StripeError as exc:
            raise self._failure("authorize", exc, booking_id=booking_id) from exc

        prometheus_metrics.record_payment_operation("authorize", "success")
        return PaymentHandle(
            reference=pi.id,
            status=pi.status,
            amount_cents=amount_cents,
            captured=capture,
            client_secret=getattr(pi, "client_secret", None),
        )

    def capture(self, reference: str, *, idempotency_key: Optional[str] = None) -> int:
        self._ensure_configured("capture")
        try:
            pi = stripe.PaymentIntent.capture(
                reference, idempotency_key=idempotency_key or f"capture:{reference}"
            )
        except stripe.StripeError as exc:
            raise self._failure("capture", exc, payment_reference=reference) from exc

        prometheus_metrics.record_payment_operation("capture", "success")
        amount_received = getattr(pi, "amount_received", None)
        if amount_received is None:
            amount_received = getattr(pi, "amount", 0)
        return int(amount_received or 0)

    def void(self, reference: str, *, idempotency_key: Optional[str] = None) -> None:
        self._ensure_configured("void")
        try:
            stripe.PaymentIntent.cancel(
                reference, idempotency_key=idempotency_key or f"void:{reference}"
            )
        except stripe.StripeError as exc:
            raise self._failure("void", exc, payment_reference=reference) from exc
        prometheus_metrics.record_payment_operation("void", "success")

    def refund(
        self,
        reference: str,
        amount_cents: Optional[int] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """Refund ``amount_cents`` (everything when ``None``); returns cents refunded."""
        self._ensure_configured("refund")
        params: Dict[str, Any] = {"payment_intent": reference}
        if amount_cents is not None:
            params["amount"] = amount_cents
        try:
            refund = stripe.Refund.create(
                idempotency_key=idempotency_key or f"refund:{reference}:{amount_cents or 'full'}",
                **params,
            )
        except stripe.StripeError as exc:
            raise self._failure("refund", exc, payment_reference=reference) from exc

        prometheus_metrics.record_payment_operation("refund", "success")
        return int(getattr(refund, "amount", amount_cents or 0))
