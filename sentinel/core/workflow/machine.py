"""Deliverable workflow engine.

Owns the status/approval lifecycle of a deliverable and gates every mutation
by the acting user's project role. Operations take a Deliverable value and
return the updated value; persisting it is the caller's job.

Order of checks for every operation:
    1. resolve the actor's role from team membership
    2. permission (and approver policy for approve/reject)
    3. input validation
    4. transition rule for the current status
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sentinel.core.errors import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from sentinel.core.rbac.checker import PermissionChecker, get_role
from sentinel.core.rbac.permissions import EDIT_COMMENTS, EDIT_DELIVERABLES, VIEW_COMMENTS
from sentinel.core.rbac.roles import TeamRole
from sentinel.services.notifications import (
    NotificationEvent,
    NotificationEventType,
    NotificationSink,
)

from .models import (
    Actor,
    Deliverable,
    Feedback,
    FeedbackKind,
    Revision,
    TeamMember,
    Visibility,
)
from .states import (
    ACTION_RULES,
    DeliverableStatus,
    TransitionRule,
    WorkflowAction,
    can_transition,
    get_transition_rule,
    is_already_applied,
)

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100
TEXT_MAX_LENGTH = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class ApprovalPolicy:
    """Which team roles may approve or reject delivered work."""

    def __init__(self, approver_roles: Iterable[TeamRole] = (TeamRole.OWNER,)):
        self.approver_roles = frozenset(TeamRole(r) for r in approver_roles)

    @classmethod
    def from_settings(cls, settings) -> "ApprovalPolicy":
        return cls(settings.approver_roles_list)

    def can_decide(self, role: TeamRole) -> bool:
        # Approvers must also hold edit:deliverables in the role table.
        checker = PermissionChecker.for_role(role)
        return role in self.approver_roles and checker.has_permission(EDIT_DELIVERABLES)


class DeliverableWorkflow:
    """
    Workflow engine for the deliverables of one project.

    Manages:
    - Status transitions with validation
    - Role-based permission gating
    - Append-only feedback and revision history
    - Notification events for every state change
    """

    def __init__(
        self,
        team_members: Sequence[TeamMember],
        sink: Optional[NotificationSink] = None,
        *,
        approval_policy: Optional[ApprovalPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_id,
    ):
        """
        Initialize the engine.

        Args:
            team_members: Team of the project the deliverables belong to
            sink: Where notification events are written; None drops them
            approval_policy: Roles allowed to approve/reject
            clock: Source of timestamps
            id_factory: Source of feedback/revision/deliverable ids
        """
        self.team_members = list(team_members)
        self.sink = sink
        self.approval_policy = approval_policy or ApprovalPolicy()
        self.clock = clock
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def role_for(self, actor: Actor) -> TeamRole:
        return get_role(actor.id, self.team_members)

    def available_actions(self, deliverable: Deliverable, actor: Actor) -> List[WorkflowAction]:
        """Status actions the actor may perform right now."""
        role = self.role_for(actor)
        return [
            action for action in WorkflowAction
            if can_transition(deliverable.status, action) and self._is_permitted(role, ACTION_RULES[action])
        ]

    def visible_deliverables(self, deliverables: Iterable[Deliverable], actor: Actor) -> List[Deliverable]:
        return [d for d in deliverables if d.is_visible_to(actor)]

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def start_work(self, deliverable: Deliverable, actor: Actor) -> Deliverable:
        self._authorize(actor, WorkflowAction.START_WORK)
        return self._transition(
            deliverable, actor, WorkflowAction.START_WORK,
            message=f"{actor.name} started work on deliverable: {deliverable.name}",
        )

    def request_approval(self, deliverable: Deliverable, actor: Actor) -> Deliverable:
        """Submit in-progress work for the client's decision."""
        self._authorize(actor, WorkflowAction.REQUEST_APPROVAL)
        return self._transition(
            deliverable, actor, WorkflowAction.REQUEST_APPROVAL,
            message=f"{actor.name} submitted deliverable for review: {deliverable.name}",
        )

    def approve(self, deliverable: Deliverable, actor: Actor, comment: Optional[str] = None) -> Deliverable:
        """
        Approve a delivered deliverable.

        A non-blank comment is kept as resolved approval feedback.
        Approving an already approved deliverable returns it unchanged.
        """
        self._authorize(actor, WorkflowAction.APPROVE)
        comment = self._comment_for(WorkflowAction.APPROVE, comment)

        feedback = ()
        if comment:
            feedback = (self._new_feedback(actor, comment, FeedbackKind.APPROVAL, resolved=True),)

        return self._transition(
            deliverable, actor, WorkflowAction.APPROVE,
            message=f"{actor.name} approved deliverable: {deliverable.name}",
            append_feedback=feedback,
            metadata={"comment": comment} if comment else None,
        )

    def reject(self, deliverable: Deliverable, actor: Actor, feedback: Optional[str]) -> Deliverable:
        """
        Reject a delivered deliverable.

        Feedback is required on every call, even when the deliverable is
        already rejected. It is recorded as a revision authored by the actor.
        """
        self._authorize(actor, WorkflowAction.REJECT)
        text = self._comment_for(WorkflowAction.REJECT, feedback, field="feedback")

        now = self.clock()
        revision = Revision(
            id=self.id_factory(),
            content=text,
            author=actor.revision_author,
            created_at=now,
            rejected_at=now,
        )
        return self._transition(
            deliverable, actor, WorkflowAction.REJECT,
            message=f"{actor.name} rejected deliverable: {deliverable.name}",
            append_revisions=(revision,),
            metadata={"comment": text},
            now=now,
        )

    def request_revision(self, deliverable: Deliverable, actor: Actor, comment: Optional[str] = None) -> Deliverable:
        """Send delivered or approved work back to in progress."""
        self._authorize(actor, WorkflowAction.REQUEST_REVISION)
        comment = self._comment_for(WorkflowAction.REQUEST_REVISION, comment)

        feedback = ()
        if comment:
            feedback = (self._new_feedback(actor, comment, FeedbackKind.CHANGE_REQUEST),)

        return self._transition(
            deliverable, actor, WorkflowAction.REQUEST_REVISION,
            message=f"{actor.name} requested revisions on: {deliverable.name}",
            append_feedback=feedback,
            metadata={"comment": comment} if comment else None,
        )

    def reopen_for_edit(self, deliverable: Deliverable, actor: Actor) -> Deliverable:
        self._authorize(actor, WorkflowAction.REOPEN_FOR_EDIT)
        return self._transition(
            deliverable, actor, WorkflowAction.REOPEN_FOR_EDIT,
            message=f"{actor.name} reopened deliverable: {deliverable.name}",
        )

    # ------------------------------------------------------------------
    # History operations (never change status)
    # ------------------------------------------------------------------

    def add_feedback(self, deliverable: Deliverable, actor: Actor, content: Optional[str]) -> Deliverable:
        """Append an unresolved comment. Allowed in every status."""
        role = self.role_for(actor)
        if not PermissionChecker.for_role(role).has_any_permission([VIEW_COMMENTS, EDIT_COMMENTS]):
            raise PermissionDeniedError(str(VIEW_COMMENTS), role=role.value)

        text = (content or "").strip()
        if not text:
            raise ValidationError("feedback content required", field="content")

        entry = self._new_feedback(actor, text, FeedbackKind.COMMENT)
        updated = deliverable.model_copy(update={
            "feedback": deliverable.feedback + (entry,),
            "updated_at": entry.created_at,
        })
        self._emit(updated, actor, NotificationEventType.COMMENT_ADDED,
                   f"{actor.name} commented on: {deliverable.name}",
                   {"feedback_id": entry.id})
        return updated

    def resolve_feedback(self, deliverable: Deliverable, actor: Actor, feedback_id: str) -> Deliverable:
        role = self.role_for(actor)
        self._require(role, str(EDIT_COMMENTS))

        entry = deliverable.find_feedback(feedback_id)
        if entry is None:
            raise NotFoundError("Feedback", feedback_id)
        if entry.resolved:
            return deliverable

        now = self.clock()
        resolved = entry.model_copy(update={"resolved": True, "resolved_at": now, "resolved_by": actor.name})
        updated = deliverable.model_copy(update={
            "feedback": tuple(resolved if f.id == feedback_id else f for f in deliverable.feedback),
            "updated_at": now,
        })
        self._emit(updated, actor, NotificationEventType.DELIVERABLE_UPDATED,
                   f"{actor.name} resolved feedback on: {deliverable.name}",
                   {"feedback_id": feedback_id, "action": "resolve_feedback"})
        return updated

    def create_deliverable(
        self,
        actor: Actor,
        *,
        project_id: str,
        milestone_id: str,
        name: str,
        description: Optional[str] = None,
        notes: Optional[str] = None,
        due_date: Optional[datetime] = None,
        visibility: Visibility = Visibility.PUBLIC,
        assigned_to: Optional[str] = None,
        deliverable_id: Optional[str] = None,
    ) -> Deliverable:
        """Create a new deliverable under a milestone, with empty history."""
        role = self.role_for(actor)
        self._require(role, str(EDIT_DELIVERABLES))

        name = (name or "").strip()
        if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
            raise ValidationError(
                f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters", field="name"
            )
        for field, value in (("description", description), ("notes", notes)):
            if value and len(value) > TEXT_MAX_LENGTH:
                raise ValidationError(f"{field.capitalize()} must be less than {TEXT_MAX_LENGTH} characters",
                                      field=field)
        if not milestone_id:
            raise ValidationError("Milestone ID is required", field="milestone_id")

        now = self.clock()
        deliverable = Deliverable(
            id=deliverable_id or self.id_factory(),
            project_id=project_id,
            milestone_id=milestone_id,
            name=name,
            description=description,
            notes=notes,
            due_date=due_date,
            visibility=visibility,
            assigned_to=assigned_to,
            created_at=now,
            updated_at=now,
        )
        self._emit(deliverable, actor, NotificationEventType.DELIVERABLE_ADDED,
                   f"{actor.name} added a new deliverable: {name}", {})
        return deliverable

    def add_revision(self, deliverable: Deliverable, actor: Actor, content: Optional[str]) -> Deliverable:
        role = self.role_for(actor)
        self._require(role, str(EDIT_DELIVERABLES))

        text = (content or "").strip()
        if not text:
            raise ValidationError("revision content required", field="content")

        now = self.clock()
        revision = Revision(id=self.id_factory(), content=text, author=actor.revision_author, created_at=now)
        updated = deliverable.model_copy(update={
            "revisions": deliverable.revisions + (revision,),
            "updated_at": now,
        })
        self._emit(updated, actor, NotificationEventType.REVISION_ADDED,
                   f"{actor.name} added a new revision to: {deliverable.name}",
                   {"revision_id": revision.id})
        return updated

    def mark_revision_final(self, deliverable: Deliverable, actor: Actor, revision_id: str) -> Deliverable:
        role = self.role_for(actor)
        self._require(role, str(EDIT_DELIVERABLES))

        revision = deliverable.find_revision(revision_id)
        if revision is None:
            raise NotFoundError("Revision", revision_id)
        if revision.is_final:
            return deliverable

        now = self.clock()
        final = revision.model_copy(update={"marked_final_at": now})
        updated = deliverable.model_copy(update={
            "revisions": tuple(final if r.id == revision_id else r for r in deliverable.revisions),
            "updated_at": now,
        })
        self._emit(updated, actor, NotificationEventType.DELIVERABLE_UPDATED,
                   f"{actor.name} marked a revision final on: {deliverable.name}",
                   {"revision_id": revision_id, "action": "mark_revision_final"})
        return updated

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_permitted(self, role: TeamRole, rule: TransitionRule) -> bool:
        checker = PermissionChecker.for_role(role)
        if rule.requires_permission and not checker.has_permission(rule.requires_permission):
            return False
        if rule.approver_only and not self.approval_policy.can_decide(role):
            return False
        return True

    def _require(self, role: TeamRole, permission: str) -> None:
        if not PermissionChecker.for_role(role).has_permission(permission):
            raise PermissionDeniedError(permission, role=role.value)

    def _authorize(self, actor: Actor, action: WorkflowAction) -> TeamRole:
        role = self.role_for(actor)
        rule = ACTION_RULES[action]
        if rule.requires_permission:
            self._require(role, rule.requires_permission)
        if rule.approver_only and not self.approval_policy.can_decide(role):
            raise PermissionDeniedError("approver role", role=role.value)
        return role

    def _comment_for(self, action: WorkflowAction, text: Optional[str], field: str = "comment") -> str:
        """Strip a comment, enforcing the rule's requires_comment flag."""
        text = (text or "").strip()
        if not text and ACTION_RULES[action].requires_comment:
            raise ValidationError(f"{field} required", field=field)
        return text

    def _transition(
        self,
        deliverable: Deliverable,
        actor: Actor,
        action: WorkflowAction,
        *,
        message: str,
        append_feedback: tuple = (),
        append_revisions: tuple = (),
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Deliverable:
        if is_already_applied(deliverable.status, action):
            logger.debug("Deliverable %s already %s, ignoring %s",
                         deliverable.id, deliverable.status.value, action.value)
            return deliverable

        rule = get_transition_rule(deliverable.status, action)
        if rule is None:
            raise IllegalTransitionError(
                f"Cannot perform {action.value} from status {deliverable.status.value}",
                deliverable.status,
                action,
            )

        from_status = deliverable.status
        updated = deliverable.model_copy(update={
            "status": rule.to_status,
            "feedback": deliverable.feedback + tuple(append_feedback),
            "revisions": deliverable.revisions + tuple(append_revisions),
            "updated_at": now or self.clock(),
        })
        logger.info("Deliverable %s: %s -> %s by %s",
                    deliverable.id, from_status.value, rule.to_status.value, actor.id)

        event_metadata = {
            "action": action.value,
            "from_status": from_status.value,
            "to_status": rule.to_status.value,
        }
        event_metadata.update(metadata or {})
        self._emit(updated, actor, NotificationEventType.DELIVERABLE_UPDATED, message, event_metadata)
        return updated

    def _new_feedback(self, actor: Actor, content: str, kind: FeedbackKind, resolved: bool = False) -> Feedback:
        now = self.clock()
        return Feedback(
            id=self.id_factory(),
            author=actor.name,
            author_id=actor.id,
            role=actor.feedback_role,
            content=content,
            created_at=now,
            kind=kind,
            resolved=resolved,
            resolved_at=now if resolved else None,
            resolved_by=actor.name if resolved else None,
        )

    def _emit(
        self,
        deliverable: Deliverable,
        actor: Actor,
        event_type: NotificationEventType,
        message: str,
        metadata: Dict[str, Any],
    ) -> None:
        if self.sink is None:
            return
        try:
            event = NotificationEvent(
                project_id=deliverable.project_id,
                type=event_type,
                actor_id=actor.id,
                actor_name=actor.name,
                message=message,
                metadata={
                    "deliverable_id": deliverable.id,
                    "deliverable_name": deliverable.name,
                    "status": deliverable.status.value,
                    **metadata,
                },
                created_at=self.clock(),
            )
            self.sink.emit(event)
        except Exception:
            # Delivery is best-effort; the mutation already happened.
            logger.exception("Failed to emit %s notification for deliverable %s",
                             event_type.value, deliverable.id)
