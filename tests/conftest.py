"""Pytest configuration and shared fixtures."""

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import sentinel.db.models  # noqa: F401  register tables
from sentinel.core.rbac import TeamRole
from sentinel.core.workflow import Actor, Deliverable, DeliverableWorkflow, TeamMember
from sentinel.core.workflow.models import MemberStatus
from sentinel.db.base import Base
from sentinel.services.notifications import InMemoryNotificationSink

PROJECT_ID = "project-1"
MILESTONE_ID = "milestone-1"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Team and actors
# ---------------------------------------------------------------------------


@pytest.fixture
def owner() -> Actor:
    return Actor(id="user-owner", name="Olivia Owner")


@pytest.fixture
def editor() -> Actor:
    return Actor(id="user-editor", name="Eddie Editor")


@pytest.fixture
def viewer() -> Actor:
    return Actor(id="user-viewer", name="Vera Viewer")


@pytest.fixture
def client_actor() -> Actor:
    """A client reviewer who holds the owner role on the project."""
    return Actor(id="user-client", name="Casey Client", is_client=True)


@pytest.fixture
def pending_owner() -> Actor:
    return Actor(id="user-pending", name="Pat Pending")


@pytest.fixture
def team(owner, editor, viewer, client_actor, pending_owner) -> list:
    return [
        TeamMember(id=owner.id, name=owner.name, email="owner@example.com",
                   role=TeamRole.OWNER, status=MemberStatus.ACTIVE),
        TeamMember(id=editor.id, name=editor.name, email="editor@example.com",
                   role=TeamRole.EDITOR, status=MemberStatus.ACTIVE),
        TeamMember(id=viewer.id, name=viewer.name, email="viewer@example.com",
                   role=TeamRole.VIEWER, status=MemberStatus.ACTIVE),
        TeamMember(id=client_actor.id, name=client_actor.name, email="client@example.com",
                   role=TeamRole.OWNER, status=MemberStatus.ACTIVE),
        TeamMember(id=pending_owner.id, name=pending_owner.name, email="pending@example.com",
                   role=TeamRole.OWNER, status=MemberStatus.PENDING),
    ]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def workflow(team, sink, clock) -> DeliverableWorkflow:
    ids = itertools.count(1)
    return DeliverableWorkflow(team, sink, clock=clock, id_factory=lambda: f"id-{next(ids)}")


@pytest.fixture
def make_deliverable():
    """Build a Deliverable value with sensible defaults."""

    def _make(**overrides) -> Deliverable:
        fields = {
            "id": "deliverable-1",
            "project_id": PROJECT_ID,
            "milestone_id": MILESTONE_ID,
            "name": "Homepage design",
            "created_at": FIXED_NOW,
            "updated_at": FIXED_NOW,
        }
        fields.update(overrides)
        return Deliverable(**fields)

    return _make


# ---------------------------------------------------------------------------
# Database and API
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory) -> TestClient:
    """API client bound to the in-memory database."""
    from sentinel.api.deps import get_db
    from sentinel.api.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.milestone_cache.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
