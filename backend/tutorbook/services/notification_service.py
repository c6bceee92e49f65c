# backend/tutorbook/services/notification_service.py
"""
Notification collaborator.

``notify`` hands an event to the notifications queue and returns at once.
Delivery (email, push, SMS) happens elsewhere; a failed hand-off is logged
and swallowed so it never blocks or reverts a booking state change.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from ..core.enums import NotificationEvent

logger = logging.getLogger(__name__)

Dispatcher = Callable[[str, str, Dict[str, Any]], Any]


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    return value


def _celery_dispatcher(user_id: str, event_kind: str, payload: Dict[str, Any]) -> Any:
    from ..tasks.notification_tasks import deliver_notification

    return deliver_notification.delay(user_id, event_kind, payload)


class NotificationService:
    def __init__(self, dispatcher: Optional[Dispatcher] = None):
        self._dispatch = dispatcher or _celery_dispatcher

    def notify(
        self,
        user_id: str,
        event_kind: NotificationEvent,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Queue a notification; returns False when the hand-off failed."""
        kind = NotificationEvent(event_kind).value
        body = _json_safe(dict(payload or {}))
        try:
            self._dispatch(user_id, kind, body)
        except Exception as exc:
            logger.warning(
                "notification_dispatch_failed",
                extra={
                    "user_id": user_id,
                    "event_kind": kind,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False
        logger.debug("notification_queued", extra={"user_id": user_id, "event_kind": kind})
        return True
