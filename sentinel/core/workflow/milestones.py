"""Milestone helpers: progress, ordering, filtering, search and completion."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from sentinel.core.errors import PermissionDeniedError
from sentinel.core.rbac.checker import PermissionChecker, get_role
from sentinel.core.rbac.permissions import Action, Permission, Resource
from sentinel.services.notifications import (
    NotificationEvent,
    NotificationEventType,
    NotificationSink,
)

from .models import Actor, Deliverable, Milestone, TeamMember
from .states import COMPLETED_STATES

logger = logging.getLogger(__name__)

EDIT_MILESTONES = Permission(Action.EDIT, Resource.MILESTONES)


class MilestoneFilter(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    UPCOMING = "upcoming"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_milestone_progress(deliverables: Sequence[Deliverable]) -> int:
    """Percentage (0-100) of deliverables that are delivered or approved."""
    if not deliverables:
        return 0
    done = sum(1 for d in deliverables if d.status in COMPLETED_STATES)
    return round(done / len(deliverables) * 100)


def all_deliverables_done(milestone: Milestone) -> bool:
    return all(d.status in COMPLETED_STATES for d in milestone.deliverables)


def sort_milestones_by_date(milestones: Iterable[Milestone]) -> List[Milestone]:
    """Earliest due date first; milestones without a due date go last."""
    return sorted(
        milestones,
        key=lambda m: (m.due_date is None, m.due_date or datetime.max.replace(tzinfo=timezone.utc)),
    )


def filter_milestones_by_status(
    milestones: Iterable[Milestone],
    status: Optional[MilestoneFilter] = None,
    *,
    now: Optional[datetime] = None,
) -> List[Milestone]:
    milestones = list(milestones)
    if status is None:
        return milestones

    status = MilestoneFilter(status)
    now = now or _utcnow()
    result = []
    for milestone in milestones:
        completed = all_deliverables_done(milestone)
        due = milestone.due_date
        if status == MilestoneFilter.COMPLETED:
            keep = completed
        elif status == MilestoneFilter.IN_PROGRESS:
            keep = not completed and (due is None or due >= now)
        else:
            keep = not completed and due is not None and due > now
        if keep:
            result.append(milestone)
    return result


def search_milestones(milestones: Iterable[Milestone], query: str) -> List[Milestone]:
    """Case-insensitive match on milestone title/description and deliverable name/description."""
    term = query.lower()

    def matches(text: Optional[str]) -> bool:
        return bool(text) and term in text.lower()

    return [
        m for m in milestones
        if matches(m.title)
        or matches(m.description)
        or any(matches(d.name) or matches(d.description) for d in m.deliverables)
    ]


def complete_milestone(
    milestone: Milestone,
    actor: Actor,
    team_members: Sequence[TeamMember],
    sink: Optional[NotificationSink] = None,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> Milestone:
    """
    Mark a milestone complete and emit milestone_completed.

    Completing an already complete milestone returns it unchanged.

    Raises:
        PermissionDeniedError: If the actor's role lacks edit:milestones
    """
    role = get_role(actor.id, team_members)
    if not PermissionChecker.for_role(role).has_permission(EDIT_MILESTONES):
        raise PermissionDeniedError(str(EDIT_MILESTONES), role=role.value)

    if milestone.is_complete:
        return milestone

    updated = milestone.model_copy(update={"is_complete": True})
    if sink is not None:
        try:
            sink.emit(NotificationEvent(
                project_id=milestone.project_id,
                type=NotificationEventType.MILESTONE_COMPLETED,
                actor_id=actor.id,
                actor_name=actor.name,
                message=f"{actor.name} completed milestone: {milestone.title}",
                metadata={"milestone_id": milestone.id, "milestone_name": milestone.title},
                created_at=clock(),
            ))
        except Exception:
            logger.exception("Failed to emit milestone_completed for milestone %s", milestone.id)
    return updated
