# backend/tutorbook/tasks/__init__.py
"""
Background tasks: group quorum resolution and notification hand-off.
"""

from .celery_app import celery_app

__all__ = ["celery_app"]
