# backend/tutorbook/tasks/beat_schedule.py
"""
Celery Beat schedule.

The group quorum scheduler runs every ``group_quorum_interval_minutes``
minutes; each run resolves slot groups inside the cutoff horizon.
"""

from typing import Any, Dict

from celery.schedules import crontab

from tutorbook.core.config import settings


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    interval = settings.group_quorum_interval_minutes
    return {
        "evaluate-group-quorum": {
            "task": "tutorbook.tasks.group_quorum_tasks.evaluate_group_quorum",
            "schedule": crontab(minute=f"*/{interval}"),
            "options": {
                "queue": "payments",
                # A tick that waits longer than the interval is superseded by the next one
                "expires": interval * 60,
            },
        },
    }
