"""Project notification and activity log models."""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, Boolean, Text, Integer

from sentinel.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectNotification(Base):
    """
    A notification shown in the project feed and queued for external delivery.
    """
    __tablename__ = "project_notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(64), nullable=False, index=True)

    # deliverable_added, deliverable_updated, milestone_completed, revision_added, comment_added
    type = Column(String(50), nullable=False)

    # Actor
    user_id = Column(String(64), nullable=False)
    user_name = Column(String(255), nullable=False)

    message = Column(Text, nullable=False)
    extra_data = Column(JSON, nullable=False, default=dict)
    read = Column(Boolean, nullable=False, default=False)

    # External delivery
    delivery_status = Column(String(20), nullable=False, default="pending", index=True)  # pending, sent, failed
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ProjectNotification {self.type} project={self.project_id}>"


class ActivityLog(Base):
    """
    Records every successful workflow operation on a deliverable.
    """
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(64), nullable=False, index=True)
    deliverable_id = Column(String(64), nullable=False, index=True)

    action_type = Column(String(50), nullable=False)  # feedback, approval, revision, status_change
    action = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)

    actor_id = Column(String(64), nullable=False)
    actor_name = Column(String(255), nullable=False)
    actor_role = Column(String(20), nullable=False)

    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} on {self.deliverable_id}>"
