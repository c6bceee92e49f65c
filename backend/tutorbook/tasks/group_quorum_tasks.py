# backend/tutorbook/tasks/group_quorum_tasks.py
"""
Periodic group quorum resolution.

Thin Celery wrapper around ``GroupQuorumService.run_once``: opens a session,
wires the Stripe gateway and the queued notifier, and reports the summary.
"""

from datetime import datetime, timezone
from typing import Any, TypedDict

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from tutorbook.database import SessionLocal
from tutorbook.services.group_quorum_service import GroupQuorumService
from tutorbook.services.notification_service import NotificationService
from tutorbook.services.payment_gateway import StripePaymentGateway
from tutorbook.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


class QuorumJobResults(TypedDict):
    groups_evaluated: int
    groups_confirmed: int
    groups_cancelled: int
    captured: int
    voided: int
    refunded: int
    failures: int
    processed_at: str


@celery_app.task(
    bind=True, max_retries=3, name="tutorbook.tasks.group_quorum_tasks.evaluate_group_quorum"
)
def evaluate_group_quorum(self: Any) -> QuorumJobResults:
    """
    Resolve group sessions entering the cutoff horizon.

    Per-group payment failures are handled inside the service and retried on
    the next tick; only a failure of the run itself retries the task.
    """
    db: Session = SessionLocal()
    try:
        service = GroupQuorumService(
            db,
            payment_gateway=StripePaymentGateway(),
            notification_service=NotificationService(),
        )
        summary = service.run_once()
        results: QuorumJobResults = {
            "groups_evaluated": summary.groups_evaluated,
            "groups_confirmed": summary.groups_confirmed,
            "groups_cancelled": summary.groups_cancelled,
            "captured": summary.captured,
            "voided": summary.voided,
            "refunded": summary.refunded,
            "failures": summary.failures,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }

        if results["failures"] > 0:
            logger.warning(f"Group quorum run completed with {results['failures']} failures")
        logger.info(
            f"Group quorum run: {results['groups_confirmed']} confirmed, "
            f"{results['groups_cancelled']} cancelled of {results['groups_evaluated']} evaluated"
        )
        return results

    except Exception as exc:
        logger.error(f"Group quorum run failed: {exc}")
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
