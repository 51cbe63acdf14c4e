"""Deliverable workflow module for Scope Sentinel.

Implements the deliverable approval state machine, its value types and
the persistence service around it.
"""

from .states import DeliverableStatus, WorkflowAction, VALID_TRANSITIONS
from .models import Actor, Deliverable, Feedback, Milestone, Revision, TeamMember, Visibility
from .machine import ApprovalPolicy, DeliverableWorkflow
from .service import DeliverableService, MilestoneRepository

__all__ = [
    "DeliverableStatus",
    "WorkflowAction",
    "VALID_TRANSITIONS",
    "Actor",
    "Deliverable",
    "Feedback",
    "Milestone",
    "Revision",
    "TeamMember",
    "Visibility",
    "ApprovalPolicy",
    "DeliverableWorkflow",
    "DeliverableService",
    "MilestoneRepository",
]
