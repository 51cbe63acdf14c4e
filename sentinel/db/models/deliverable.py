"""Deliverable and milestone database models.

A deliverable is stored as one document row: its revisions and feedback
live in JSON columns, and ``version`` increases on every write so stale
writes can be detected.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, Text, Integer, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from sentinel.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MilestoneRecord(Base):
    """A grouping of deliverables within a project."""
    __tablename__ = "milestones"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)

    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    is_complete = Column(Boolean, nullable=False, default=False)
    visibility = Column(String(20), nullable=False, default="Public")

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliverables = relationship("DeliverableRecord", back_populates="milestone",
                                order_by="DeliverableRecord.created_at")

    def __repr__(self) -> str:
        return f"<MilestoneRecord {self.title} [{'complete' if self.is_complete else 'open'}]>"


class DeliverableRecord(Base):
    """
    Stored deliverable document.

    ``is_approved`` is not stored; it is derived from ``status``.
    """
    __tablename__ = "deliverables"

    id = Column(String(64), primary_key=True)
    project_id = Column(String(64), nullable=False, index=True)
    milestone_id = Column(String(64), ForeignKey("milestones.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    assigned_to = Column(String(64), nullable=True)

    # Workflow state
    status = Column(String(50), nullable=False, default="Not Started", index=True)
    visibility = Column(String(20), nullable=False, default="Public")

    # Embedded history, chronological
    revisions = Column(JSON, nullable=False, default=list)
    feedback = Column(JSON, nullable=False, default=list)

    due_date = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    milestone = relationship("MilestoneRecord", back_populates="deliverables")

    def __repr__(self) -> str:
        return f"<DeliverableRecord {self.name} [{self.status}] v{self.version}>"
