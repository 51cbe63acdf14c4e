import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, UniqueConstraint

from sentinel.db.base import Base


class TeamMemberRecord(Base):
    """Membership of a user in a project team."""
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_team_members_project_user"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    project_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="viewer")  # owner, editor, viewer
    status = Column(String(20), nullable=False, default="pending")  # pending, active
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self) -> str:
        return f"<TeamMemberRecord {self.email} {self.role} [{self.status}]>"
