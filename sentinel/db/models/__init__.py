"""Database models for Scope Sentinel."""

from sentinel.db.models.deliverable import DeliverableRecord, MilestoneRecord
from sentinel.db.models.team import TeamMemberRecord
from sentinel.db.models.notification import ProjectNotification, ActivityLog

__all__ = [
    "DeliverableRecord",
    "MilestoneRecord",
    "TeamMemberRecord",
    "ProjectNotification",
    "ActivityLog",
]
