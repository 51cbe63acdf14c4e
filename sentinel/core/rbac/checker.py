"""Permission checking utilities for Scope Sentinel.

The permission provider contract used by the workflow engine:

    get_role(user_id, team_members) -> TeamRole
    has_permission(role, "action:resource") -> bool
"""

import logging
from typing import Iterable, List, Optional, Union

from .permissions import Permission
from .roles import TeamRole, ROLE_PERMISSIONS

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"


class PermissionChecker:
    """Checks if a role's permission set grants specific permissions."""

    def __init__(self, permissions: Iterable[str], role: Optional[TeamRole] = None):
        """
        Initialize with a permission list.

        Args:
            permissions: Permission strings from the role table
            role: Role the permissions were taken from, for error messages
        """
        self.permissions = set(permissions)
        self.role = role

    @classmethod
    def for_role(cls, role: Union[TeamRole, str]) -> "PermissionChecker":
        role = TeamRole(role)
        return cls(ROLE_PERMISSIONS[role], role=role)

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if the permission set grants a specific permission."""
        perm_str = str(permission) if isinstance(permission, Permission) else permission

        if perm_str in self.permissions:
            return True

        if "*:*" in self.permissions:
            return True

        # Action wildcard: edit:* grants edit on every resource
        if ":" in perm_str:
            action = perm_str.split(":")[0]
            if f"{action}:*" in self.permissions:
                return True

        return False

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if any of the given permissions is granted."""
        return any(self.has_permission(p) for p in permissions)


def get_role(user_id: Optional[str], team_members: Iterable) -> TeamRole:
    """
    Resolve a user's effective role within a project.

    Users who are not on the team, or whose invitation is still pending,
    fall back to the viewer role.

    Args:
        user_id: ID of the acting user
        team_members: Team members of the project (objects with id, role, status)

    Returns:
        The user's TeamRole
    """
    if not user_id:
        return TeamRole.VIEWER

    for member in team_members:
        if member.id != user_id:
            continue
        status = getattr(member, "status", ACTIVE_STATUS)
        if str(getattr(status, "value", status)) != ACTIVE_STATUS:
            logger.debug("Team member %s is %s, treating as viewer", user_id, status)
            return TeamRole.VIEWER
        return TeamRole(member.role)

    return TeamRole.VIEWER


def has_permission(role: Union[TeamRole, str], permission: Union[str, Permission]) -> bool:
    """
    Check if a role has a specific permission.

    Args:
        role: Team role
        permission: Permission string or Permission object

    Returns:
        True if the role's table grants the permission
    """
    try:
        checker = PermissionChecker.for_role(role)
    except ValueError:
        return False
    return checker.has_permission(permission)
