"""Celery tasks for external notification delivery.

Drains pending project_notifications rows through the NotificationDispatcher.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from celery import Celery, shared_task
from sqlalchemy.orm import Session

from sentinel.core.config import get_settings
from sentinel.db.models import ProjectNotification
from sentinel.db.session import SessionLocal
from sentinel.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    NotificationEventType,
)

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_DELIVERY_ATTEMPTS = 3

celery_app = Celery(
    "sentinel",
    broker=settings.celery_broker_url,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "sentinel.workers.notification_tasks.dispatch_pending_notifications": {"queue": "notifications"},
    },
    task_default_queue="default",
    beat_schedule={
        "dispatch-pending-notifications": {
            "task": "sentinel.workers.notification_tasks.dispatch_pending_notifications",
            "schedule": 60.0,
        },
    },
)


def _to_event(row: ProjectNotification) -> NotificationEvent:
    return NotificationEvent(
        project_id=row.project_id,
        type=NotificationEventType(row.type),
        actor_id=row.user_id,
        actor_name=row.user_name,
        message=row.message,
        metadata=row.extra_data or {},
        created_at=row.created_at,
    )


def deliver_pending_notifications(
    db: Session,
    dispatcher: Optional[NotificationDispatcher] = None,
    limit: int = 100,
) -> Dict[str, int]:
    """
    Deliver pending notification rows, oldest first.

    A row whose delivery failed stays pending until it has been tried
    MAX_DELIVERY_ATTEMPTS times, then it is marked failed.

    Returns:
        Counts of rows sent, retried and failed
    """
    if dispatcher is None:
        dispatcher = NotificationDispatcher()
    rows = db.query(ProjectNotification).filter(
        ProjectNotification.delivery_status == "pending"
    ).order_by(ProjectNotification.created_at.asc()).limit(limit).all()

    counts = {"sent": 0, "retried": 0, "failed": 0}
    for row in rows:
        row.attempts = (row.attempts or 0) + 1
        results = dispatcher.dispatch(_to_event(row))
        failed = [channel for channel, result in results.items() if result == "failed"]

        if not failed:
            row.delivery_status = "sent"
            row.sent_at = datetime.now(timezone.utc)
            row.error_message = None
            counts["sent"] += 1
        elif row.attempts >= MAX_DELIVERY_ATTEMPTS:
            row.delivery_status = "failed"
            row.error_message = f"Delivery failed via: {', '.join(failed)}"
            counts["failed"] += 1
            logger.error("Giving up on notification %s after %d attempts", row.id, row.attempts)
        else:
            row.error_message = f"Delivery failed via: {', '.join(failed)}"
            counts["retried"] += 1

    db.commit()
    return counts


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def dispatch_pending_notifications(self, limit: int = 100) -> Dict[str, int]:
    """Periodic task: deliver pending project notifications."""
    db = SessionLocal()
    try:
        counts = deliver_pending_notifications(db, limit=limit)
        logger.info("Notification delivery: %s", counts)
        return counts
    except Exception as exc:
        db.rollback()
        logger.exception("Notification delivery run failed")
        raise self.retry(exc=exc)
    finally:
        db.close()
