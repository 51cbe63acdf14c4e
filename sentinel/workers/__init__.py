"""Celery workers for Scope Sentinel."""

from sentinel.workers.notification_tasks import (
    celery_app,
    deliver_pending_notifications,
    dispatch_pending_notifications,
)

__all__ = [
    "celery_app",
    "deliver_pending_notifications",
    "dispatch_pending_notifications",
]
