# backend/tutorbook/tasks/notification_tasks.py
"""
Notification hand-off.

Booking state changes enqueue ``deliver_notification``; channel delivery
(email, push, SMS) is owned by the messaging service that consumes the
``notifications`` queue downstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from celery.utils.log import get_task_logger

from tutorbook.core.enums import NotificationEvent
from tutorbook.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(
    name="tutorbook.tasks.notification_tasks.deliver_notification",
    max_retries=5,
    default_retry_delay=30,
    queue="notifications",
)
def deliver_notification(user_id: str, event_kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Record a booking notification for ``user_id``."""
    kind = NotificationEvent(event_kind).value
    logger.info(
        "Notification %s for user %s (booking %s)",
        kind,
        user_id,
        payload.get("booking_id", "-"),
    )
    return {
        "user_id": user_id,
        "event_kind": kind,
        "booking_id": payload.get("booking_id"),
        "delivered_at": datetime.now(timezone.utc).isoformat(),
    }
