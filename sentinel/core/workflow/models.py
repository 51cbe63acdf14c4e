"""Value types for deliverables and their surrounding project entities.

All models are frozen: workflow operations return updated copies and never
mutate their inputs.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from sentinel.core.rbac.roles import TeamRole
from .states import DeliverableStatus


class Visibility(str, Enum):
    """Who may see a deliverable or milestone."""
    INTERNAL = "Internal"   # Team only
    CLIENT = "Client"       # Team and assigned clients
    PUBLIC = "Public"       # Anyone with the share link


class RevisionAuthor(str, Enum):
    CLIENT = "Client"
    ADMIN = "Admin"


class FeedbackRole(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"


class FeedbackKind(str, Enum):
    COMMENT = "comment"
    APPROVAL = "approval"
    CHANGE_REQUEST = "change_request"


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class Actor(_Frozen):
    """The user performing a workflow operation."""
    id: str
    name: str
    is_client: bool = False

    @property
    def revision_author(self) -> RevisionAuthor:
        return RevisionAuthor.CLIENT if self.is_client else RevisionAuthor.ADMIN

    @property
    def feedback_role(self) -> FeedbackRole:
        return FeedbackRole.CLIENT if self.is_client else FeedbackRole.ADMIN


class TeamMember(_Frozen):
    id: str
    name: str
    email: str
    role: TeamRole = TeamRole.VIEWER
    status: MemberStatus = MemberStatus.PENDING


class Revision(_Frozen):
    """A substantive submission or rejection record."""
    id: str
    content: str
    author: RevisionAuthor
    created_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    marked_final_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.marked_final_at is not None


class Feedback(_Frozen):
    """A comment on a deliverable, independent of the approval status."""
    id: str
    author: str
    role: FeedbackRole
    content: str
    created_at: datetime
    author_id: Optional[str] = None
    kind: FeedbackKind = FeedbackKind.COMMENT
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class Deliverable(_Frozen):
    """A trackable unit of work within a milestone."""
    id: str
    project_id: str
    milestone_id: str
    name: str
    description: Optional[str] = None
    notes: Optional[str] = None
    status: DeliverableStatus = DeliverableStatus.NOT_STARTED
    visibility: Visibility = Visibility.PUBLIC
    revisions: Tuple[Revision, ...] = ()
    feedback: Tuple[Feedback, ...] = ()
    due_date: Optional[datetime] = None
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def is_approved(self) -> bool:
        """Derived from status so the two can never disagree."""
        return self.status == DeliverableStatus.APPROVED

    @property
    def unresolved_feedback(self) -> Tuple[Feedback, ...]:
        return tuple(f for f in self.feedback if not f.resolved)

    def find_feedback(self, feedback_id: str) -> Optional[Feedback]:
        return next((f for f in self.feedback if f.id == feedback_id), None)

    def find_revision(self, revision_id: str) -> Optional[Revision]:
        return next((r for r in self.revisions if r.id == revision_id), None)

    def is_visible_to(self, actor: Actor) -> bool:
        """Clients never see internal deliverables."""
        if not actor.is_client:
            return True
        return self.visibility != Visibility.INTERNAL


class Milestone(_Frozen):
    """A grouping of deliverables with its own due date."""
    id: str
    project_id: str
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    is_complete: bool = False
    visibility: Visibility = Visibility.PUBLIC
    deliverables: Tuple[Deliverable, ...] = Field(default_factory=tuple)

    def is_visible_to(self, actor: Actor) -> bool:
        if not actor.is_client:
            return True
        return self.visibility != Visibility.INTERNAL
