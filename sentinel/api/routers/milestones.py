"""Milestone API endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sentinel.api.deps import get_current_actor, get_db, get_milestone_cache
from sentinel.api.routers.deliverables import workflow_http_error
from sentinel.core.cache import TTLCache
from sentinel.core.errors import NotFoundError, WorkflowError
from sentinel.core.workflow import Actor, MilestoneRepository
from sentinel.core.workflow.milestones import (
    MilestoneFilter,
    calculate_milestone_progress,
    filter_milestones_by_status,
    search_milestones,
    sort_milestones_by_date,
)

router = APIRouter(prefix="/projects/{project_id}/milestones", tags=["milestones"])


class MilestoneResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    due_date: Optional[datetime]
    is_complete: bool
    visibility: str
    progress: int
    deliverable_count: int


class MilestoneListResponse(BaseModel):
    items: List[MilestoneResponse]
    total: int


def _to_response(milestone, actor: Actor) -> MilestoneResponse:
    visible = [d for d in milestone.deliverables if d.is_visible_to(actor)]
    return MilestoneResponse(
        id=milestone.id,
        title=milestone.title,
        description=milestone.description,
        due_date=milestone.due_date,
        is_complete=milestone.is_complete,
        visibility=milestone.visibility.value,
        progress=calculate_milestone_progress(visible),
        deliverable_count=len(visible),
    )


@router.get("", response_model=MilestoneListResponse)
def list_milestones(
    project_id: str,
    status_filter: Optional[MilestoneFilter] = Query(None, alias="status"),
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    """List milestones by due date, optionally filtered by status or search text."""
    milestones = [m for m in MilestoneRepository(db, cache).list(project_id) if m.is_visible_to(actor)]
    milestones = filter_milestones_by_status(milestones, status_filter)
    if q:
        milestones = search_milestones(milestones, q)
    items = [_to_response(m, actor) for m in sort_milestones_by_date(milestones)]
    return MilestoneListResponse(items=items, total=len(items))


@router.post("/{milestone_id}/complete", response_model=MilestoneResponse, status_code=status.HTTP_200_OK)
def complete_milestone(
    project_id: str,
    milestone_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    repository = MilestoneRepository(db, cache)
    try:
        if not repository.get(project_id, milestone_id).is_visible_to(actor):
            raise NotFoundError("Milestone", milestone_id)
        milestone = repository.complete(project_id, milestone_id, actor)
        db.commit()
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    repository.invalidate(project_id)
    return _to_response(milestone, actor)
