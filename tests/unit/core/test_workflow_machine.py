"""Tests for the deliverable workflow engine."""

import pytest

from sentinel.core.errors import (
    IllegalTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from sentinel.core.rbac import TeamRole
from sentinel.core.workflow import ApprovalPolicy, DeliverableWorkflow
from sentinel.core.workflow.models import FeedbackKind, FeedbackRole, RevisionAuthor, Visibility
from sentinel.core.workflow import states
from sentinel.core.workflow.states import DeliverableStatus, WorkflowAction
from sentinel.services.notifications import NotificationEventType

S = DeliverableStatus


class TestStatusTransitions:
    """Test the happy-path lifecycle."""

    def test_start_work(self, workflow, owner, make_deliverable, sink):
        result = workflow.start_work(make_deliverable(), owner)
        assert result.status == S.IN_PROGRESS
        assert sink.events[0].type == NotificationEventType.DELIVERABLE_UPDATED

    def test_request_approval(self, workflow, editor, make_deliverable):
        result = workflow.request_approval(make_deliverable(status=S.IN_PROGRESS), editor)
        assert result.status == S.DELIVERED

    def test_approve_delivered(self, workflow, owner, make_deliverable, sink):
        result = workflow.approve(make_deliverable(status=S.DELIVERED), owner)

        assert result.status == S.APPROVED
        assert result.is_approved is True
        assert len(sink) == 1
        event = sink.events[0]
        assert event.type == NotificationEventType.DELIVERABLE_UPDATED
        assert event.metadata["from_status"] == "Delivered"
        assert event.metadata["to_status"] == "Approved"
        assert event.actor_id == owner.id

    def test_approve_in_review(self, workflow, owner, make_deliverable):
        result = workflow.approve(make_deliverable(status=S.IN_REVIEW), owner)
        assert result.status == S.APPROVED

    def test_approve_with_comment_records_resolved_feedback(self, workflow, client_actor, make_deliverable):
        result = workflow.approve(make_deliverable(status=S.DELIVERED), client_actor, comment="  Looks great  ")

        assert len(result.feedback) == 1
        entry = result.feedback[0]
        assert entry.content == "Looks great"
        assert entry.kind == FeedbackKind.APPROVAL
        assert entry.role == FeedbackRole.CLIENT
        assert entry.resolved

    def test_approve_blank_comment_adds_no_feedback(self, workflow, owner, make_deliverable):
        result = workflow.approve(make_deliverable(status=S.DELIVERED), owner, comment="   ")
        assert result.feedback == ()

    def test_reject(self, workflow, client_actor, make_deliverable, clock):
        result = workflow.reject(make_deliverable(status=S.DELIVERED), client_actor, "needs revisions")

        assert result.status == S.REJECTED
        assert result.is_approved is False
        assert len(result.revisions) == 1
        revision = result.revisions[0]
        assert revision.content == "needs revisions"
        assert revision.author == RevisionAuthor.CLIENT
        assert revision.rejected_at == clock.now

    def test_request_revision_from_approved(self, workflow, owner, make_deliverable):
        d = make_deliverable(status=S.APPROVED)
        result = workflow.request_revision(d, owner, "please adjust spacing")

        assert result.status == S.IN_PROGRESS
        assert result.is_approved is False
        assert len(result.feedback) == 1
        assert result.feedback[0].content == "please adjust spacing"
        assert result.feedback[0].kind == FeedbackKind.CHANGE_REQUEST
        assert not result.feedback[0].resolved

    def test_request_revision_from_delivered(self, workflow, editor, make_deliverable):
        result = workflow.request_revision(make_deliverable(status=S.DELIVERED), editor)
        assert result.status == S.IN_PROGRESS
        assert result.feedback == ()

    @pytest.mark.parametrize("status", [S.APPROVED, S.REJECTED])
    def test_reopen_for_edit(self, workflow, owner, make_deliverable, status):
        result = workflow.reopen_for_edit(make_deliverable(status=status), owner)
        assert result.status == S.IN_PROGRESS

    def test_input_is_not_mutated(self, workflow, owner, make_deliverable):
        d = make_deliverable(status=S.DELIVERED)
        workflow.approve(d, owner, comment="ok")
        assert d.status == S.DELIVERED
        assert d.feedback == ()

    def test_updated_at_uses_clock(self, workflow, owner, make_deliverable, clock):
        clock.advance(hours=2)
        result = workflow.start_work(make_deliverable(), owner)
        assert result.updated_at == clock.now


class TestIdempotence:
    """Test repeated actions."""

    def test_approve_twice(self, workflow, owner, make_deliverable, sink):
        once = workflow.approve(make_deliverable(status=S.DELIVERED), owner)
        twice = workflow.approve(once, owner)

        assert twice == once
        assert len(sink) == 1

    def test_repeated_approve_ignores_comment(self, workflow, owner, make_deliverable):
        approved = make_deliverable(status=S.APPROVED)
        assert workflow.approve(approved, owner, comment="again") is approved

    def test_reject_rejected_is_noop(self, workflow, owner, make_deliverable, sink):
        rejected = make_deliverable(status=S.REJECTED)
        assert workflow.reject(rejected, owner, "still bad") is rejected
        assert len(sink) == 0

    def test_submit_in_review_is_noop(self, workflow, editor, make_deliverable):
        d = make_deliverable(status=S.IN_REVIEW)
        assert workflow.request_approval(d, editor) is d


class TestIllegalTransitions:
    """Test actions from unsupported statuses."""

    @pytest.mark.parametrize("status,method", [
        (S.NOT_STARTED, "request_approval"),
        (S.NOT_STARTED, "approve"),
        (S.IN_PROGRESS, "approve"),
        (S.REJECTED, "approve"),
        (S.DELIVERED, "start_work"),
        (S.APPROVED, "start_work"),
        (S.DELIVERED, "reopen_for_edit"),
        (S.REJECTED, "request_revision"),
    ])
    def test_illegal(self, workflow, owner, make_deliverable, sink, status, method):
        d = make_deliverable(status=status)
        with pytest.raises(IllegalTransitionError) as exc_info:
            getattr(workflow, method)(d, owner)

        assert exc_info.value.from_status == status
        assert exc_info.value.action == WorkflowAction(method)
        assert len(sink) == 0

    @pytest.mark.parametrize("status", [S.NOT_STARTED, S.IN_PROGRESS, S.APPROVED])
    def test_reject_illegal(self, workflow, owner, make_deliverable, status):
        with pytest.raises(IllegalTransitionError):
            workflow.reject(make_deliverable(status=status), owner, "no")


class TestRejectValidation:
    """Reject requires feedback."""

    @pytest.mark.parametrize("feedback", [None, "", "   ", "\n\t"])
    @pytest.mark.parametrize("status", list(DeliverableStatus))
    def test_empty_feedback_always_fails(self, workflow, owner, make_deliverable, sink, feedback, status):
        d = make_deliverable(status=status)
        with pytest.raises(ValidationError) as exc_info:
            workflow.reject(d, owner, feedback)

        assert exc_info.value.field == "feedback"
        assert len(sink) == 0

    def test_comment_requirement_follows_rule_table(self, monkeypatch, workflow, owner, make_deliverable):
        rules = states.ACTION_RULES
        monkeypatch.setitem(rules, WorkflowAction.APPROVE,
                            rules[WorkflowAction.APPROVE]._replace(requires_comment=True))

        with pytest.raises(ValidationError) as exc_info:
            workflow.approve(make_deliverable(status=S.DELIVERED), owner, "  ")
        assert exc_info.value.field == "comment"

        result = workflow.approve(make_deliverable(status=S.DELIVERED), owner, "Looks good")
        assert result.status == S.APPROVED


class TestPermissions:
    """Test role gating."""

    @pytest.mark.parametrize("method,status,args", [
        ("approve", S.DELIVERED, ()),
        ("reject", S.DELIVERED, ("nope",)),
        ("request_revision", S.APPROVED, ("again",)),
        ("reopen_for_edit", S.REJECTED, ()),
    ])
    def test_viewer_cannot_decide(self, workflow, viewer, make_deliverable, sink, method, status, args):
        d = make_deliverable(status=status)
        with pytest.raises(PermissionError):
            getattr(workflow, method)(d, viewer, *args)
        assert len(sink) == 0

    def test_viewer_permission_checked_before_validation(self, workflow, viewer, make_deliverable):
        with pytest.raises(PermissionDeniedError):
            workflow.reject(make_deliverable(status=S.DELIVERED), viewer, "")

    def test_viewer_permission_checked_before_transition(self, workflow, viewer, make_deliverable):
        with pytest.raises(PermissionDeniedError):
            workflow.approve(make_deliverable(status=S.NOT_STARTED), viewer)

    def test_editor_cannot_approve_by_default(self, workflow, editor, make_deliverable):
        with pytest.raises(PermissionDeniedError) as exc_info:
            workflow.approve(make_deliverable(status=S.DELIVERED), editor)
        assert exc_info.value.role == "editor"

    def test_editor_approves_when_policy_allows(self, team, editor, make_deliverable):
        policy = ApprovalPolicy([TeamRole.OWNER, TeamRole.EDITOR])
        engine = DeliverableWorkflow(team, approval_policy=policy)
        assert engine.approve(make_deliverable(status=S.DELIVERED), editor).is_approved

    def test_policy_never_lets_viewer_decide(self, team, viewer, make_deliverable):
        policy = ApprovalPolicy([TeamRole.VIEWER])
        engine = DeliverableWorkflow(team, approval_policy=policy)
        with pytest.raises(PermissionDeniedError):
            engine.approve(make_deliverable(status=S.DELIVERED), viewer)

    def test_pending_member_is_viewer(self, workflow, pending_owner, make_deliverable):
        with pytest.raises(PermissionDeniedError):
            workflow.start_work(make_deliverable(), pending_owner)

    def test_unknown_user_is_viewer(self, workflow, make_deliverable):
        from sentinel.core.workflow import Actor

        stranger = Actor(id="stranger", name="Stranger")
        with pytest.raises(PermissionDeniedError):
            workflow.start_work(make_deliverable(), stranger)

    def test_viewer_can_comment(self, workflow, viewer, make_deliverable):
        result = workflow.add_feedback(make_deliverable(), viewer, "Question about fonts")
        assert len(result.feedback) == 1

    def test_viewer_cannot_resolve_feedback(self, workflow, owner, viewer, make_deliverable):
        d = workflow.add_feedback(make_deliverable(), owner, "note")
        with pytest.raises(PermissionDeniedError):
            workflow.resolve_feedback(d, viewer, d.feedback[0].id)


class TestAvailableActions:
    """Test the actions offered to a user."""

    def test_owner_on_delivered(self, workflow, owner, make_deliverable):
        actions = workflow.available_actions(make_deliverable(status=S.DELIVERED), owner)
        assert set(actions) == {WorkflowAction.APPROVE, WorkflowAction.REJECT, WorkflowAction.REQUEST_REVISION}

    def test_editor_on_delivered(self, workflow, editor, make_deliverable):
        actions = workflow.available_actions(make_deliverable(status=S.DELIVERED), editor)
        assert actions == [WorkflowAction.REQUEST_REVISION]

    def test_viewer_has_none(self, workflow, viewer, make_deliverable):
        for status in DeliverableStatus:
            assert workflow.available_actions(make_deliverable(status=status), viewer) == []


class TestFeedback:
    """Test feedback history operations."""

    @pytest.mark.parametrize("status", list(DeliverableStatus))
    def test_add_feedback_never_changes_status(self, workflow, editor, make_deliverable, status):
        result = workflow.add_feedback(make_deliverable(status=status), editor, "A comment")
        assert result.status == status
        assert result.feedback[-1].content == "A comment"
        assert result.feedback[-1].role == FeedbackRole.ADMIN
        assert result.feedback[-1].author_id == editor.id

    def test_add_feedback_emits_comment_added(self, workflow, editor, make_deliverable, sink):
        workflow.add_feedback(make_deliverable(), editor, "A comment")
        assert [e.type for e in sink.events] == [NotificationEventType.COMMENT_ADDED]

    def test_add_feedback_requires_content(self, workflow, editor, make_deliverable):
        with pytest.raises(ValidationError):
            workflow.add_feedback(make_deliverable(), editor, "  ")

    def test_resolve_feedback(self, workflow, owner, editor, make_deliverable, clock):
        d = workflow.add_feedback(make_deliverable(), editor, "Fix the logo")
        feedback_id = d.feedback[0].id
        clock.advance(minutes=5)

        result = workflow.resolve_feedback(d, owner, feedback_id)
        entry = result.find_feedback(feedback_id)
        assert entry.resolved
        assert entry.resolved_by == owner.name
        assert entry.resolved_at == clock.now
        assert result.unresolved_feedback == ()

    def test_resolve_already_resolved_is_noop(self, workflow, owner, make_deliverable, sink):
        d = workflow.add_feedback(make_deliverable(), owner, "note")
        d = workflow.resolve_feedback(d, owner, d.feedback[0].id)
        emitted = len(sink)

        assert workflow.resolve_feedback(d, owner, d.feedback[0].id) is d
        assert len(sink) == emitted

    def test_resolve_nonexistent_feedback(self, workflow, owner, make_deliverable, sink):
        d = make_deliverable(status=S.DELIVERED)
        with pytest.raises(NotFoundError):
            workflow.resolve_feedback(d, owner, "nonexistent-id")
        assert d.status == S.DELIVERED
        assert len(sink) == 0


class TestDeliverableCreation:
    """Test creating deliverables."""

    def test_create(self, workflow, editor, sink, clock):
        d = workflow.create_deliverable(
            editor, project_id="project-1", milestone_id="milestone-1", name="  Logo  ",
            visibility=Visibility.CLIENT,
        )
        assert d.name == "Logo"
        assert d.status == S.NOT_STARTED
        assert d.revisions == () and d.feedback == ()
        assert d.created_at == clock.now
        assert sink.events[0].type == NotificationEventType.DELIVERABLE_ADDED

    @pytest.mark.parametrize("name", ["ab", "x" * 101, "   "])
    def test_invalid_name(self, workflow, editor, name):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_deliverable(editor, project_id="p", milestone_id="m", name=name)
        assert exc_info.value.field == "name"

    def test_description_too_long(self, workflow, editor):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_deliverable(editor, project_id="p", milestone_id="m", name="Logo",
                                        description="x" * 1001)
        assert exc_info.value.field == "description"

    def test_milestone_required(self, workflow, editor):
        with pytest.raises(ValidationError):
            workflow.create_deliverable(editor, project_id="p", milestone_id="", name="Logo")

    def test_viewer_cannot_create(self, workflow, viewer):
        with pytest.raises(PermissionDeniedError):
            workflow.create_deliverable(viewer, project_id="p", milestone_id="m", name="Logo")


class TestRevisions:
    """Test revision history operations."""

    def test_add_revision(self, workflow, editor, make_deliverable, sink):
        result = workflow.add_revision(make_deliverable(status=S.IN_PROGRESS), editor, "v2 mockups")
        assert result.status == S.IN_PROGRESS
        assert result.revisions[-1].content == "v2 mockups"
        assert result.revisions[-1].author == RevisionAuthor.ADMIN
        assert sink.events[-1].type == NotificationEventType.REVISION_ADDED

    def test_mark_revision_final(self, workflow, editor, make_deliverable):
        d = workflow.add_revision(make_deliverable(), editor, "v1")
        revision_id = d.revisions[0].id

        result = workflow.mark_revision_final(d, editor, revision_id)
        assert result.find_revision(revision_id).is_final
        assert workflow.mark_revision_final(result, editor, revision_id) is result

    def test_mark_unknown_revision(self, workflow, editor, make_deliverable):
        with pytest.raises(NotFoundError):
            workflow.mark_revision_final(make_deliverable(), editor, "missing")


class TestInvariants:
    """Test properties that hold across operation sequences."""

    def test_is_approved_tracks_status(self, workflow, owner, make_deliverable):
        d = make_deliverable()
        steps = [
            lambda x: workflow.start_work(x, owner),
            lambda x: workflow.request_approval(x, owner),
            lambda x: workflow.reject(x, owner, "redo"),
            lambda x: workflow.reopen_for_edit(x, owner),
            lambda x: workflow.request_approval(x, owner),
            lambda x: workflow.approve(x, owner),
            lambda x: workflow.request_revision(x, owner, "tweak"),
            lambda x: workflow.request_approval(x, owner),
            lambda x: workflow.approve(x, owner),
        ]
        for step in steps:
            d = step(d)
            assert d.is_approved == (d.status == S.APPROVED)
        assert d.is_approved

    def test_history_is_append_only(self, workflow, owner, make_deliverable):
        d = workflow.add_feedback(make_deliverable(status=S.DELIVERED), owner, "first")
        d = workflow.reject(d, owner, "second")
        d = workflow.reopen_for_edit(d, owner)
        d = workflow.add_revision(d, owner, "third")

        assert [f.content for f in d.feedback] == ["first"]
        assert [r.content for r in d.revisions] == ["second", "third"]

    def test_serialized_is_approved(self, make_deliverable):
        data = make_deliverable(status=S.APPROVED).model_dump(mode="json")
        assert data["is_approved"] is True
        assert data["status"] == "Approved"


class TestVisibility:
    """Clients never see internal deliverables."""

    def test_visible_deliverables(self, workflow, owner, client_actor, make_deliverable):
        items = [
            make_deliverable(id="a", visibility=Visibility.INTERNAL),
            make_deliverable(id="b", visibility=Visibility.CLIENT),
            make_deliverable(id="c", visibility=Visibility.PUBLIC),
        ]
        assert [d.id for d in workflow.visible_deliverables(items, client_actor)] == ["b", "c"]
        assert len(workflow.visible_deliverables(items, owner)) == 3


class TestNotificationFailures:
    """A failing sink never affects the operation result."""

    def test_sink_errors_are_swallowed(self, team, owner, make_deliverable, caplog):
        class BrokenSink:
            def emit(self, event):
                raise RuntimeError("queue down")

        engine = DeliverableWorkflow(team, BrokenSink())
        result = engine.approve(make_deliverable(status=S.DELIVERED), owner)

        assert result.status == S.APPROVED
        assert "Failed to emit" in caplog.text
