"""Deliverable workflow statuses and transitions.

State Machine Diagram:

    ┌─────────────┐
    │ NOT STARTED │ ← Initial state (new deliverable)
    └──────┬──────┘
           │ start_work
    ┌──────▼──────┐◄──────────────────────────────┐
    │ IN PROGRESS │                               │
    └──────┬──────┘                               │
           │ request_approval                     │
    ┌──────▼──────┐  request_revision             │
    │  DELIVERED  │───────────────────────────────┤
    │ (IN REVIEW) │                               │
    └──────┬──────┘                               │
           │                                      │
           ├────────────────┐                     │
           │ approve        │ reject              │
    ┌──────▼──────┐  ┌──────▼──────┐              │
    │  APPROVED   │  │  REJECTED   │──────────────┤ reopen_for_edit
    └──────┬──────┘  └─────────────┘              │
           │ request_revision / reopen_for_edit   │
           └──────────────────────────────────────┘

IN REVIEW is an alias of DELIVERED: both mean "awaiting a decision".
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple

from sentinel.core.rbac.permissions import EDIT_DELIVERABLES, PERMISSION_DEFINITIONS


class DeliverableStatus(str, Enum):
    """Statuses in the deliverable workflow."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    DELIVERED = "Delivered"       # Submitted, awaiting client decision
    IN_REVIEW = "In Review"       # Alias of DELIVERED
    APPROVED = "Approved"
    REJECTED = "Rejected"


class WorkflowAction(str, Enum):
    """Actions that trigger status transitions."""

    START_WORK = "start_work"                # NOT_STARTED → IN_PROGRESS
    REQUEST_APPROVAL = "request_approval"    # IN_PROGRESS → DELIVERED
    APPROVE = "approve"                      # DELIVERED → APPROVED
    REJECT = "reject"                        # DELIVERED → REJECTED
    REQUEST_REVISION = "request_revision"    # DELIVERED/APPROVED → IN_PROGRESS
    REOPEN_FOR_EDIT = "reopen_for_edit"      # APPROVED/REJECTED → IN_PROGRESS


class TransitionRule(NamedTuple):
    """Defines a valid status transition."""
    from_status: DeliverableStatus
    to_status: DeliverableStatus
    action: WorkflowAction
    requires_permission: Optional[str] = None
    requires_comment: bool = False
    approver_only: bool = False


_EDIT = str(EDIT_DELIVERABLES)

TRANSITION_RULES: list[TransitionRule] = [
    # Internal work lifecycle
    TransitionRule(DeliverableStatus.NOT_STARTED, DeliverableStatus.IN_PROGRESS, WorkflowAction.START_WORK, _EDIT),
    TransitionRule(DeliverableStatus.IN_PROGRESS, DeliverableStatus.DELIVERED, WorkflowAction.REQUEST_APPROVAL, _EDIT),

    # Client decision
    TransitionRule(DeliverableStatus.DELIVERED, DeliverableStatus.APPROVED, WorkflowAction.APPROVE,
                   _EDIT, approver_only=True),
    TransitionRule(DeliverableStatus.DELIVERED, DeliverableStatus.REJECTED, WorkflowAction.REJECT,
                   _EDIT, requires_comment=True, approver_only=True),

    # Re-open paths
    TransitionRule(DeliverableStatus.DELIVERED, DeliverableStatus.IN_PROGRESS, WorkflowAction.REQUEST_REVISION, _EDIT),
    TransitionRule(DeliverableStatus.APPROVED, DeliverableStatus.IN_PROGRESS, WorkflowAction.REQUEST_REVISION, _EDIT),
    TransitionRule(DeliverableStatus.APPROVED, DeliverableStatus.IN_PROGRESS, WorkflowAction.REOPEN_FOR_EDIT, _EDIT),
    TransitionRule(DeliverableStatus.REJECTED, DeliverableStatus.IN_PROGRESS, WorkflowAction.REOPEN_FOR_EDIT, _EDIT),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[DeliverableStatus, Set[WorkflowAction]] = {}
TRANSITION_TARGETS: Dict[tuple[DeliverableStatus, WorkflowAction], TransitionRule] = {}
ACTION_RULES: Dict[WorkflowAction, TransitionRule] = {}

for rule in TRANSITION_RULES:
    if rule.requires_permission and rule.requires_permission not in PERMISSION_DEFINITIONS:
        raise RuntimeError(f"Undefined permission {rule.requires_permission} for {rule.action.value}")

    VALID_TRANSITIONS.setdefault(rule.from_status, set()).add(rule.action)
    TRANSITION_TARGETS[(rule.from_status, rule.action)] = rule

    # Every rule for an action shares its target and gating
    existing = ACTION_RULES.setdefault(rule.action, rule)
    if existing._replace(from_status=rule.from_status) != rule:
        raise RuntimeError(f"Inconsistent transition rules for {rule.action.value}")


# Aliases collapse onto their canonical status for gating
STATUS_ALIASES: Dict[DeliverableStatus, DeliverableStatus] = {
    DeliverableStatus.IN_REVIEW: DeliverableStatus.DELIVERED,
}

# Counted as done when computing milestone progress
COMPLETED_STATES: Set[DeliverableStatus] = {
    DeliverableStatus.DELIVERED,
    DeliverableStatus.IN_REVIEW,
    DeliverableStatus.APPROVED,
}


def canonical_status(status: DeliverableStatus) -> DeliverableStatus:
    """Map alias statuses onto the status used for gating."""
    status = DeliverableStatus(status)
    return STATUS_ALIASES.get(status, status)


def can_transition(from_status: DeliverableStatus, action: WorkflowAction) -> bool:
    """Check if an action is valid from the given status."""
    return action in VALID_TRANSITIONS.get(canonical_status(from_status), set())


def get_transition_rule(from_status: DeliverableStatus, action: WorkflowAction) -> Optional[TransitionRule]:
    """Get the transition rule for a status/action combination."""
    return TRANSITION_TARGETS.get((canonical_status(from_status), action))


def is_already_applied(status: DeliverableStatus, action: WorkflowAction) -> bool:
    """True when the deliverable already sits in the action's target status."""
    return canonical_status(status) == ACTION_RULES[action].to_status
