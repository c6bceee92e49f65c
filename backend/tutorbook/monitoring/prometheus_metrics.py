# backend/tutorbook/monitoring/prometheus_metrics.py
"""
Prometheus metrics for the booking engine.

Service timings come from the ``@BaseService.measure_operation`` decorator;
the domain counters below are incremented directly by the lock, the booking
path and the quorum scheduler. Everything lives on a private registry so the
host process can expose it next to its own metrics.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

tutor_lock_total = Counter(
    "tutorbook_tutor_lock_total",
    "Tutor availability lock operations",
    ["action", "outcome"],  # acquire|release|refresh x success|timeout|expired|redis_unavailable|error
    registry=REGISTRY,
)

tutor_lock_wait_seconds = Histogram(
    "tutorbook_tutor_lock_wait_seconds",
    "Time spent waiting for the tutor availability lock",
    registry=REGISTRY,
    buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

booking_attempts_total = Counter(
    "tutorbook_booking_attempts_total",
    "Booking attempts by medium and outcome",
    ["medium", "outcome"],  # created|occupied|group_full|slot_unavailable|payment_failed|invalid
    registry=REGISTRY,
)

group_quorum_outcomes_total = Counter(
    "tutorbook_group_quorum_outcomes_total",
    "Slot groups resolved by the quorum scheduler",
    ["outcome"],  # confirmed|cancelled|capture_retry|refund_retry|error
    registry=REGISTRY,
)

payment_operations_total = Counter(
    "tutorbook_payment_operations_total",
    "Payment provider calls",
    ["operation", "status"],  # authorize|capture|void|refund x success|error|timeout
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Recording helpers plus a briefly cached exposition payload for scrapers."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """Timing and outcome of one ``measure_operation`` call."""
        labels = {"service": service, "operation": operation}
        service_operation_duration_seconds.labels(**labels).observe(duration)
        service_operations_total.labels(status=status, **labels).inc()
        if status == "error" and error_type:
            errors_total.labels(error_type=error_type, **labels).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_tutor_lock(action: str, outcome: str) -> None:
        tutor_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def observe_tutor_lock_wait(duration: float) -> None:
        tutor_lock_wait_seconds.observe(max(duration, 0.0))
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_attempt(medium: str, outcome: str) -> None:
        booking_attempts_total.labels(medium=medium, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_group_quorum_outcome(outcome: str) -> None:
        group_quorum_outcomes_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payment_operation(operation: str, status: str) -> None:
        payment_operations_total.labels(operation=operation, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """Text exposition of ``REGISTRY``, reused for up to ``_cache_ttl_seconds``."""
        cls = PrometheusMetrics
        with cls._cache_lock:
            age = None if cls._cache_ts is None else monotonic() - cls._cache_ts
            fresh = age is not None and age <= cls._cache_ttl_seconds
            if cls._cache_payload is None or not fresh:
                cls._cache_payload = cast(bytes, generate_latest(REGISTRY))
                cls._cache_ts = monotonic()
            return cls._cache_payload

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


prometheus_metrics = PrometheusMetrics()
