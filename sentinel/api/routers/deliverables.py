"""Deliverable workflow API endpoints."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sentinel.api.deps import get_current_actor, get_db, get_milestone_cache
from sentinel.core.cache import TTLCache
from sentinel.core.errors import (
    ConcurrentModificationError,
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)
from sentinel.core.workflow import Actor, Deliverable, DeliverableService, Visibility


router = APIRouter(prefix="/projects/{project_id}/deliverables", tags=["deliverables"])


# Schemas
class DeliverableCreate(BaseModel):
    milestone_id: str
    name: str
    description: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[datetime] = None
    visibility: Visibility = Visibility.PUBLIC
    assigned_to: Optional[str] = None


class DeliverableListResponse(BaseModel):
    items: List[Deliverable]
    total: int


class CommentAction(BaseModel):
    comment: Optional[str] = None


class RejectAction(BaseModel):
    feedback: Optional[str] = None


class ContentAction(BaseModel):
    content: Optional[str] = Field(None, description="Feedback or revision text")


class AvailableActionsResponse(BaseModel):
    status: str
    actions: List[str]


def workflow_http_error(exc: WorkflowError) -> HTTPException:
    """Map a workflow error to its HTTP status."""
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (IllegalTransitionError, ConcurrentModificationError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


def _apply(
    db: Session,
    cache: TTLCache,
    project_id: str,
    deliverable_id: str,
    actor: Actor,
    operation: str,
    **kwargs,
) -> Deliverable:
    service = DeliverableService(db, project_id)
    try:
        deliverable = service.apply(deliverable_id, actor, operation, **kwargs)
        db.commit()
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    # Milestone lists embed deliverable statuses
    cache.invalidate(project_id)
    return deliverable


def _get_visible(service: DeliverableService, deliverable_id: str, actor: Actor) -> Deliverable:
    try:
        deliverable = service.get(deliverable_id)
    except NotFoundError as e:
        raise workflow_http_error(e)
    if not deliverable.is_visible_to(actor):
        raise HTTPException(status_code=404, detail=f"Deliverable {deliverable_id} not found")
    return deliverable


# Endpoints
@router.get("", response_model=DeliverableListResponse)
def list_deliverables(
    project_id: str,
    milestone_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List the deliverables of a project that the caller may see."""
    items = DeliverableService(db, project_id).list(milestone_id=milestone_id, actor=actor)
    return DeliverableListResponse(items=items, total=len(items))


@router.post("", response_model=Deliverable, status_code=status.HTTP_201_CREATED)
def create_deliverable(
    project_id: str,
    data: DeliverableCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    """Create a deliverable under a milestone."""
    service = DeliverableService(db, project_id)
    try:
        deliverable = service.create(actor, **data.model_dump())
        db.commit()
    except WorkflowError as e:
        db.rollback()
        raise workflow_http_error(e)
    cache.invalidate(project_id)
    return deliverable


@router.get("/{deliverable_id}", response_model=Deliverable)
def get_deliverable(
    project_id: str,
    deliverable_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return _get_visible(DeliverableService(db, project_id), deliverable_id, actor)


@router.get("/{deliverable_id}/actions", response_model=AvailableActionsResponse)
def get_available_actions(
    project_id: str,
    deliverable_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Status actions the caller may perform right now."""
    service = DeliverableService(db, project_id)
    deliverable = _get_visible(service, deliverable_id, actor)
    actions = service.workflow().available_actions(deliverable, actor)
    return AvailableActionsResponse(status=deliverable.status.value, actions=[a.value for a in actions])


@router.post("/{deliverable_id}/start", response_model=Deliverable)
def start_work(
    project_id: str,
    deliverable_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "start_work")


@router.post("/{deliverable_id}/submit", response_model=Deliverable)
def request_approval(
    project_id: str,
    deliverable_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    """Submit in-progress work for review."""
    return _apply(db, cache, project_id, deliverable_id, actor, "request_approval")


@router.post("/{deliverable_id}/approve", response_model=Deliverable)
def approve(
    project_id: str,
    deliverable_id: str,
    action: CommentAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "approve", comment=action.comment)


@router.post("/{deliverable_id}/reject", response_model=Deliverable)
def reject(
    project_id: str,
    deliverable_id: str,
    action: RejectAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    """Reject delivered work. Feedback is required."""
    return _apply(db, cache, project_id, deliverable_id, actor, "reject", feedback=action.feedback)


@router.post("/{deliverable_id}/request-revision", response_model=Deliverable)
def request_revision(
    project_id: str,
    deliverable_id: str,
    action: CommentAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "request_revision", comment=action.comment)


@router.post("/{deliverable_id}/reopen", response_model=Deliverable)
def reopen_for_edit(
    project_id: str,
    deliverable_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "reopen_for_edit")


@router.post("/{deliverable_id}/feedback", response_model=Deliverable, status_code=status.HTTP_201_CREATED)
def add_feedback(
    project_id: str,
    deliverable_id: str,
    data: ContentAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "add_feedback", content=data.content)


@router.post("/{deliverable_id}/feedback/{feedback_id}/resolve", response_model=Deliverable)
def resolve_feedback(
    project_id: str,
    deliverable_id: str,
    feedback_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "resolve_feedback", feedback_id=feedback_id)


@router.post("/{deliverable_id}/revisions", response_model=Deliverable, status_code=status.HTTP_201_CREATED)
def add_revision(
    project_id: str,
    deliverable_id: str,
    data: ContentAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "add_revision", content=data.content)


@router.post("/{deliverable_id}/revisions/{revision_id}/final", response_model=Deliverable)
def mark_revision_final(
    project_id: str,
    deliverable_id: str,
    revision_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    cache: TTLCache = Depends(get_milestone_cache),
):
    return _apply(db, cache, project_id, deliverable_id, actor, "mark_revision_final", revision_id=revision_id)
