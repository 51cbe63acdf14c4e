"""Deliverable service: persistence around the workflow engine.

Reads a deliverable snapshot, applies one engine operation, and writes the
result back with an optimistic version check. A stale write is retried from
a fresh read. Notification events of an attempt are only forwarded once its
write went through.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from sentinel.core.cache import TTLCache
from sentinel.core.config import Settings, get_settings
from sentinel.core.errors import ConcurrentModificationError, NotFoundError
from sentinel.services.notifications import (
    BufferedNotificationSink,
    DatabaseNotificationSink,
    NotificationSink,
)

from .machine import ApprovalPolicy, DeliverableWorkflow
from .milestones import complete_milestone
from .models import (
    Actor,
    Deliverable,
    Feedback,
    MemberStatus,
    Milestone,
    Revision,
    TeamMember,
    Visibility,
)
from .states import DeliverableStatus, WorkflowAction

logger = logging.getLogger(__name__)

# Engine operations that act on an existing deliverable -> activity type
OPERATIONS: Dict[str, str] = {
    WorkflowAction.START_WORK.value: "status_change",
    WorkflowAction.REQUEST_APPROVAL.value: "status_change",
    WorkflowAction.APPROVE.value: "approval",
    WorkflowAction.REJECT.value: "approval",
    WorkflowAction.REQUEST_REVISION.value: "status_change",
    WorkflowAction.REOPEN_FOR_EDIT.value: "status_change",
    "add_feedback": "feedback",
    "resolve_feedback": "feedback",
    "add_revision": "revision",
    "mark_revision_final": "revision",
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored times are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def record_to_deliverable(record) -> Deliverable:
    """Convert a DeliverableRecord row to a Deliverable value."""
    return Deliverable(
        id=record.id,
        project_id=record.project_id,
        milestone_id=record.milestone_id,
        name=record.name,
        description=record.description,
        notes=record.notes,
        status=DeliverableStatus(record.status),
        visibility=Visibility(record.visibility),
        revisions=tuple(Revision.model_validate(r) for r in record.revisions or []),
        feedback=tuple(Feedback.model_validate(f) for f in record.feedback or []),
        due_date=_as_utc(record.due_date),
        assigned_to=record.assigned_to,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


def deliverable_to_values(deliverable: Deliverable) -> Dict[str, Any]:
    """Column values for a Deliverable value."""
    return {
        "project_id": deliverable.project_id,
        "milestone_id": deliverable.milestone_id,
        "name": deliverable.name,
        "description": deliverable.description,
        "notes": deliverable.notes,
        "status": deliverable.status.value,
        "visibility": deliverable.visibility.value,
        "revisions": [r.model_dump(mode="json") for r in deliverable.revisions],
        "feedback": [f.model_dump(mode="json") for f in deliverable.feedback],
        "due_date": deliverable.due_date,
        "assigned_to": deliverable.assigned_to,
        "updated_at": deliverable.updated_at,
    }


class DeliverableService:
    """
    High-level service for deliverables of one project.

    Handles:
    - Loading deliverables and the project team
    - Applying workflow operations with optimistic concurrency
    - Activity logging
    - Forwarding notification events after a successful write
    """

    def __init__(
        self,
        db: Session,
        project_id: str,
        *,
        settings: Optional[Settings] = None,
        sink: Optional[NotificationSink] = None,
        approval_policy: Optional[ApprovalPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the deliverable service.

        Args:
            db: Database session; committing is the caller's job
            project_id: Project the deliverables belong to
            settings: Application settings
            sink: Notification sink (defaults to project_notifications rows)
            approval_policy: Roles allowed to approve/reject
            clock: Timestamp source passed to the engine
        """
        self.db = db
        self.project_id = project_id
        self.settings = settings or get_settings()
        self.sink = sink if sink is not None else DatabaseNotificationSink(db)
        self.approval_policy = approval_policy or ApprovalPolicy.from_settings(self.settings)
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def team_members(self) -> List[TeamMember]:
        from sentinel.db.models import TeamMemberRecord

        rows = self.db.query(TeamMemberRecord).filter(
            TeamMemberRecord.project_id == self.project_id
        ).all()
        return [
            TeamMember(id=r.user_id, name=r.name, email=r.email, role=r.role, status=MemberStatus(r.status))
            for r in rows
        ]

    def get(self, deliverable_id: str) -> Deliverable:
        return record_to_deliverable(self._load_record(deliverable_id))

    def list(self, *, milestone_id: Optional[str] = None, actor: Optional[Actor] = None) -> List[Deliverable]:
        """List deliverables, hiding those the actor may not see."""
        from sentinel.db.models import DeliverableRecord

        query = self.db.query(DeliverableRecord).filter(DeliverableRecord.project_id == self.project_id)
        if milestone_id:
            query = query.filter(DeliverableRecord.milestone_id == milestone_id)
        deliverables = [record_to_deliverable(r) for r in query.order_by(DeliverableRecord.created_at.asc()).all()]

        if actor is not None:
            deliverables = [d for d in deliverables if d.is_visible_to(actor)]
        return deliverables

    def workflow(self, sink: Optional[NotificationSink] = None) -> DeliverableWorkflow:
        kwargs = {"clock": self.clock} if self.clock else {}
        return DeliverableWorkflow(
            self.team_members(),
            sink,
            approval_policy=self.approval_policy,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, actor: Actor, **fields) -> Deliverable:
        """Create a deliverable under a milestone of this project."""
        from sentinel.db.models import DeliverableRecord

        buffer = BufferedNotificationSink(self.sink)
        deliverable = self.workflow(buffer).create_deliverable(actor, project_id=self.project_id, **fields)

        record = DeliverableRecord(id=deliverable.id, version=1, created_at=deliverable.created_at,
                                   **deliverable_to_values(deliverable))
        self.db.add(record)
        self._log_activity(None, deliverable, actor, "create_deliverable", "status_change")
        self.db.flush()
        buffer.flush()
        return deliverable

    def apply(self, deliverable_id: str, actor: Actor, operation: str, **kwargs) -> Deliverable:
        """
        Apply one workflow operation and persist the result.

        Args:
            deliverable_id: Deliverable to operate on
            actor: Acting user
            operation: Engine operation name (see OPERATIONS)
            **kwargs: Operation arguments (comment, feedback, content, feedback_id, revision_id)

        Returns:
            The updated deliverable

        Raises:
            ValueError: If the operation name is unknown
            NotFoundError: If the deliverable does not exist
            ConcurrentModificationError: If every retry hit a stale version
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown workflow operation: {operation}")

        attempts = max(1, self.settings.max_write_retries)
        for attempt in range(1, attempts + 1):
            buffer = BufferedNotificationSink(self.sink)
            record = self._load_record(deliverable_id)
            expected_version = record.version
            current = record_to_deliverable(record)

            updated = getattr(self.workflow(buffer), operation)(current, actor, **kwargs)
            if updated is current:
                return current

            try:
                self._save(updated, expected_version)
            except ConcurrentModificationError:
                buffer.discard()
                self.db.expire_all()
                if attempt == attempts:
                    raise
                logger.warning("Deliverable %s changed during %s, retrying (%d/%d)",
                               deliverable_id, operation, attempt, attempts)
                continue

            self._log_activity(current, updated, actor, operation, OPERATIONS[operation])
            self.db.flush()
            buffer.flush()
            return updated

        raise AssertionError("unreachable")

    def _load_record(self, deliverable_id: str):
        from sentinel.db.models import DeliverableRecord

        record = self.db.query(DeliverableRecord).filter(
            DeliverableRecord.id == deliverable_id,
            DeliverableRecord.project_id == self.project_id,
        ).first()
        if record is None:
            raise NotFoundError("Deliverable", deliverable_id)
        return record

    def _save(self, deliverable: Deliverable, expected_version: int) -> None:
        """Write a deliverable if its stored version still matches."""
        from sentinel.db.models import DeliverableRecord

        values = deliverable_to_values(deliverable)
        values["version"] = expected_version + 1
        updated_rows = self.db.query(DeliverableRecord).filter(
            DeliverableRecord.id == deliverable.id,
            DeliverableRecord.version == expected_version,
        ).update(values, synchronize_session="fetch")

        if updated_rows == 0:
            current = self.db.query(DeliverableRecord.version).filter(
                DeliverableRecord.id == deliverable.id
            ).scalar()
            raise ConcurrentModificationError(deliverable.id, expected_version, current)

    def _log_activity(
        self,
        before: Optional[Deliverable],
        after: Deliverable,
        actor: Actor,
        action: str,
        action_type: str,
    ) -> None:
        from sentinel.db.models import ActivityLog

        role = self.workflow().role_for(actor)
        from_status = before.status.value if before else None
        to_status = after.status.value
        if before is None:
            message = f"Created deliverable: {after.name}"
        elif from_status != to_status:
            message = f"Changed status from {from_status} to {to_status}"
        else:
            message = f"{action.replace('_', ' ').capitalize()}"

        self.db.add(ActivityLog(
            project_id=self.project_id,
            deliverable_id=after.id,
            action_type=action_type,
            action=action,
            message=message,
            actor_id=actor.id,
            actor_name=actor.name,
            actor_role=role.value,
            from_status=from_status,
            to_status=to_status,
            extra_data={"is_client": actor.is_client},
        ))


class MilestoneRepository:
    """
    Loads a project's milestones through a TTL cache owned by the caller.
    """

    def __init__(self, db: Session, cache: TTLCache, *, sink: Optional[NotificationSink] = None):
        self.db = db
        self.cache = cache
        self.sink = sink if sink is not None else DatabaseNotificationSink(db)

    def list(self, project_id: str) -> List[Milestone]:
        return self.cache.get_or_load(project_id, lambda: self._load(project_id))

    def get(self, project_id: str, milestone_id: str) -> Milestone:
        for milestone in self.list(project_id):
            if milestone.id == milestone_id:
                return milestone
        raise NotFoundError("Milestone", milestone_id)

    def complete(self, project_id: str, milestone_id: str, actor: Actor) -> Milestone:
        """
        Mark a milestone complete and persist it.

        The cached list is left alone; call invalidate() once the caller
        has committed.
        """
        from sentinel.db.models import MilestoneRecord

        milestone = self.get(project_id, milestone_id)
        team = DeliverableService(self.db, project_id, sink=self.sink).team_members()

        buffer = BufferedNotificationSink(self.sink)
        updated = complete_milestone(milestone, actor, team, buffer)
        if updated is milestone:
            return milestone

        self.db.query(MilestoneRecord).filter(MilestoneRecord.id == milestone_id).update(
            {"is_complete": True}, synchronize_session="fetch"
        )
        self.db.flush()
        buffer.flush()
        return updated

    def invalidate(self, project_id: str) -> None:
        """Drop the cached milestone list of a project."""
        self.cache.invalidate(project_id)

    def _load(self, project_id: str) -> List[Milestone]:
        from sentinel.db.models import MilestoneRecord

        rows = self.db.query(MilestoneRecord).filter(
            MilestoneRecord.project_id == project_id
        ).order_by(MilestoneRecord.due_date.asc()).all()
        logger.debug("Loaded %d milestones for project %s", len(rows), project_id)
        return [
            Milestone(
                id=r.id,
                project_id=r.project_id,
                title=r.title,
                description=r.description,
                due_date=_as_utc(r.due_date),
                is_complete=r.is_complete,
                visibility=Visibility(r.visibility),
                deliverables=tuple(record_to_deliverable(d) for d in r.deliverables),
            )
            for r in rows
        ]
