"""Error taxonomy for the deliverable workflow.

Every error here is recoverable: callers surface the message to the user
and carry on. None of them are fatal to the process.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""


class ValidationError(WorkflowError):
    """Raised when input is missing or malformed (e.g. empty rejection feedback)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PermissionDeniedError(WorkflowError, PermissionError):
    """Raised when the acting role lacks a required capability."""

    def __init__(self, required_permission: str, role: Optional[str] = None):
        detail = f"Permission denied: requires {required_permission}"
        if role:
            detail += f" (role: {role})"
        super().__init__(detail)
        self.required_permission = required_permission
        self.role = role


class NotFoundError(WorkflowError):
    """Raised when a referenced feedback, revision or deliverable does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class IllegalTransitionError(WorkflowError):
    """Raised when an action cannot be performed from the current status."""

    def __init__(self, message: str, from_status, action):
        super().__init__(message)
        self.from_status = from_status
        self.action = action


class ConcurrentModificationError(WorkflowError):
    """Raised when a stored document changed between read and write."""

    def __init__(self, deliverable_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"Deliverable {deliverable_id} changed since read "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.deliverable_id = deliverable_id
        self.expected_version = expected_version
        self.actual_version = actual_version
