"""Team role definitions for Scope Sentinel.

Defines the 3 project roles with their permission sets:
1. Owner - Full project access
2. Editor - Edits deliverables, milestones and comments; views invoices and team
3. Viewer - Read-only access
"""

from enum import Enum
from typing import Dict, FrozenSet

from .permissions import PERMISSION_DEFINITIONS, Resource, Action, Permission


class TeamRole(str, Enum):
    """Permission tier of a team member within a project."""

    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


def _build_permissions(*perms: tuple) -> FrozenSet[str]:
    """Build permission strings from (Action, Resource) tuples."""
    return frozenset(str(Permission(a, r)) for a, r in perms)


# Owner: implicitly holds every permission
OWNER_PERMISSIONS = frozenset(["*:*"])

EDITOR_PERMISSIONS = _build_permissions(
    (Action.VIEW, Resource.TEAM),
    (Action.VIEW, Resource.PROJECT),

    # Deliverables and milestones - full edit access
    (Action.EDIT, Resource.DELIVERABLES),
    (Action.VIEW, Resource.DELIVERABLES),
    (Action.EDIT, Resource.MILESTONES),
    (Action.VIEW, Resource.MILESTONES),

    # Invoices - view only
    (Action.VIEW, Resource.INVOICES),

    (Action.EDIT, Resource.COMMENTS),
    (Action.VIEW, Resource.COMMENTS),
)

VIEWER_PERMISSIONS = _build_permissions(
    (Action.VIEW, Resource.TEAM),
    (Action.VIEW, Resource.PROJECT),
    (Action.VIEW, Resource.DELIVERABLES),
    (Action.VIEW, Resource.MILESTONES),
    (Action.VIEW, Resource.INVOICES),
    (Action.VIEW, Resource.COMMENTS),
)


ROLE_PERMISSIONS: Dict[TeamRole, FrozenSet[str]] = {
    TeamRole.OWNER: OWNER_PERMISSIONS,
    TeamRole.EDITOR: EDITOR_PERMISSIONS,
    TeamRole.VIEWER: VIEWER_PERMISSIONS,
}


def _check_tables() -> None:
    missing = set(TeamRole) - set(ROLE_PERMISSIONS)
    if missing:
        raise RuntimeError(f"Roles without a permission table: {sorted(r.value for r in missing)}")
    for role, permissions in ROLE_PERMISSIONS.items():
        unknown = {p for p in permissions if "*" not in p} - set(PERMISSION_DEFINITIONS)
        if unknown:
            raise RuntimeError(f"Role {role.value} grants undefined permissions: {sorted(unknown)}")


_check_tables()
