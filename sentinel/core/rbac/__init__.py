"""RBAC (Role-Based Access Control) module for Scope Sentinel.

This module defines the permission model, team roles, and access control utilities.
"""

from .permissions import Permission, Resource, Action, PERMISSION_DEFINITIONS
from .roles import TeamRole, ROLE_PERMISSIONS
from .checker import PermissionChecker, get_role, has_permission

__all__ = [
    "Permission",
    "Resource",
    "Action",
    "PERMISSION_DEFINITIONS",
    "TeamRole",
    "ROLE_PERMISSIONS",
    "PermissionChecker",
    "get_role",
    "has_permission",
]
