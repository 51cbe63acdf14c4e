"""Permission model for Scope Sentinel RBAC.

Defines all resources, actions, and permission combinations.
Uses a matrix approach: permissions = actions × resources.

Permission string format: "action:resource"
Examples:
  - edit:deliverables
  - view:comments
  - manage:team
"""

from enum import Enum
from typing import NamedTuple, FrozenSet


class Resource(str, Enum):
    """Resources within a project that can be protected by permissions."""

    TEAM = "team"                 # Project team membership
    PROJECT = "project"           # Project settings
    DELIVERABLES = "deliverables" # Deliverables and their approval workflow
    MILESTONES = "milestones"     # Milestones grouping deliverables
    INVOICES = "invoices"         # Invoices and payments
    COMMENTS = "comments"         # Feedback threads


class Action(str, Enum):
    """Actions that can be performed on resources."""

    MANAGE = "manage"   # Full control
    EDIT = "edit"       # Create and modify
    VIEW = "view"       # Read only


class Permission(NamedTuple):
    """A permission is a combination of action and resource."""
    action: Action
    resource: Resource

    def __str__(self) -> str:
        return f"{self.action.value}:{self.resource.value}"


# Maps each resource to its valid actions
PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.TEAM: frozenset([Action.MANAGE, Action.VIEW]),
    Resource.PROJECT: frozenset([Action.MANAGE, Action.VIEW]),
    Resource.DELIVERABLES: frozenset([Action.EDIT, Action.VIEW]),
    Resource.MILESTONES: frozenset([Action.EDIT, Action.VIEW]),
    Resource.INVOICES: frozenset([Action.EDIT, Action.VIEW]),
    Resource.COMMENTS: frozenset([Action.EDIT, Action.VIEW]),
}


def _generate_permission_definitions() -> dict[str, Permission]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(action, resource)
            permissions[str(perm)] = perm
    return permissions


# All valid permissions as a dictionary: "action:resource" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()

# Permissions the workflow engine checks
EDIT_DELIVERABLES = Permission(Action.EDIT, Resource.DELIVERABLES)
EDIT_COMMENTS = Permission(Action.EDIT, Resource.COMMENTS)
VIEW_COMMENTS = Permission(Action.VIEW, Resource.COMMENTS)
