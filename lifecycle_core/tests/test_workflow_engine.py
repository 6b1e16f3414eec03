# lifecycle_core/tests/test_workflow_engine.py

import pytest
from rest_framework.exceptions import NotFound

from lifecycle_core.models import AuditLog, Comment, LifecycleEvent, Project, WorkflowStep
from lifecycle_core.workflows import (
    DELETING_ITEM,
    LIFECYCLE_TYPES,
    NEW_ITEM,
    stages_for,
)
from lifecycle_core.workflows import engine
from lifecycle_core.workflows.runtime import InvalidTransition


def _active(project_id):
    return list(
        WorkflowStep.objects.filter(
            project_id=project_id,
            status=WorkflowStep.Status.IN_PROGRESS,
        )
    )


def _statuses(project_id):
    return list(
        WorkflowStep.objects.filter(project_id=project_id)
        .order_by("step_order")
        .values_list("step_order", "status")
    )


def _assert_mirror(project_id):
    project = Project.objects.get(pk=project_id)
    active = _active(project_id)
    assert len(active) == 1
    assert project.current_stage == active[0].step_name


# ---------------------------------------------------------
# Initialization
# ---------------------------------------------------------
@pytest.mark.django_db
@pytest.mark.parametrize("lifecycle_type", LIFECYCLE_TYPES)
def test_initialize_creates_one_active_step_at_order_one(cm_user, lifecycle_type):
    project = Project.objects.create(
        project_number=f"T-{lifecycle_type}",
        name="bare",
        lifecycle_type=lifecycle_type,
        created_by=cm_user,
    )

    steps = engine.initialize_workflow(project.pk, lifecycle_type)

    assert len(steps) == len(stages_for(lifecycle_type))
    active = _active(project.pk)
    assert len(active) == 1
    assert active[0].step_order == 1
    assert [s for _, s in _statuses(project.pk)][1:] == ["PENDING"] * (len(steps) - 1)

    project.refresh_from_db()
    assert project.current_stage == "Draft"


@pytest.mark.django_db
def test_initialize_twice_is_rejected(project):
    before = WorkflowStep.objects.filter(project=project).count()

    with pytest.raises(InvalidTransition):
        engine.initialize_workflow(project.pk)

    assert WorkflowStep.objects.filter(project=project).count() == before


@pytest.mark.django_db
def test_steps_copy_registry_roles(project):
    steps = list(project.workflow_steps.order_by("step_order"))
    assert steps[0].required_role == "Category Manager"
    assert steps[1].required_role == "Logistics"
    assert steps[-1].required_role is None


# ---------------------------------------------------------
# Advance
# ---------------------------------------------------------
@pytest.mark.django_db
def test_new_item_walks_every_stage_to_completed(project, cm_user):
    seen = []
    statuses = []

    for _ in range(7):
        snapshot = engine.advance(project.pk, actor=cm_user)
        seen.append(snapshot.project.current_stage)
        statuses.append(snapshot.project.status)

    assert seen == [
        "Freight Strategy",
        "Supplier Pricing",
        "KINEXO Pricing",
        "CM Approval",
        "SSM Approval",
        "In Transition",
        "Completed",
    ]
    assert statuses == ["IN_PROGRESS"] * 6 + ["COMPLETED"]

    project.refresh_from_db()
    assert project.completed_at is not None


@pytest.mark.django_db
@pytest.mark.parametrize("lifecycle_type", LIFECYCLE_TYPES)
def test_advance_n_minus_one_times_completes_then_rejects(project_factory, cm_user, lifecycle_type):
    project = project_factory(lifecycle_type)
    n = len(stages_for(lifecycle_type))

    for _ in range(n - 1):
        engine.advance(project.pk, actor=cm_user)
        _assert_mirror(project.pk)

    project.refresh_from_db()
    assert project.status == Project.Status.COMPLETED
    assert [s for _, s in _statuses(project.pk)] == ["COMPLETED"] * (n - 1) + ["IN_PROGRESS"]

    with pytest.raises(InvalidTransition):
        engine.advance(project.pk, actor=cm_user)

    project.refresh_from_db()
    assert project.status == Project.Status.COMPLETED


@pytest.mark.django_db
def test_advance_stamps_completion_and_writes_audit(project, cm_user):
    engine.advance(project.pk, actor=cm_user, comment="freight next")

    draft = project.workflow_steps.get(step_order=1)
    assert draft.status == WorkflowStep.Status.COMPLETED
    assert draft.completed_by == cm_user
    assert draft.completed_at is not None

    log = AuditLog.objects.get(project=project, action="ADVANCE_WORKFLOW")
    assert log.entity_type == "WORKFLOW"
    assert log.entity_id == str(draft.pk)
    assert log.user == cm_user
    assert log.changes == {"from": "Draft", "to": "Freight Strategy", "comment": "freight next"}

    comment = Comment.objects.get(project=project)
    assert comment.content == "freight next"
    assert comment.is_internal is True
    assert comment.user_name == "Cm"


@pytest.mark.django_db
def test_advance_without_comment_writes_no_comment(project, cm_user):
    engine.advance(project.pk, actor=cm_user, comment="   ")
    assert not Comment.objects.filter(project=project).exists()
    assert AuditLog.objects.get(action="ADVANCE_WORKFLOW").changes["comment"] is None


@pytest.mark.django_db
def test_advance_writes_pending_outbox_event(project, cm_user):
    engine.advance(project.pk, actor=cm_user, comment="go")

    event = LifecycleEvent.objects.get(event_type="WORKFLOW_ADVANCED")
    assert event.status == LifecycleEvent.Status.PENDING
    assert event.entity_type == "PROJECT"
    assert event.entity_id == str(project.pk)
    assert event.payload == {
        "fromStage": "Draft",
        "toStage": "Freight Strategy",
        "stepOrder": 2,
        "comment": "go",
        "userId": cm_user.pk,
    }


@pytest.mark.django_db
def test_each_transition_bumps_workflow_version(project, cm_user):
    assert project.workflow_version == 0

    engine.advance(project.pk, actor=cm_user)
    engine.advance(project.pk, actor=cm_user)
    engine.move_back(project.pk, actor=cm_user)

    project.refresh_from_db()
    assert project.workflow_version == 3


@pytest.mark.django_db
def test_advance_unknown_project_is_not_found(cm_user):
    with pytest.raises(NotFound):
        engine.advance(999999, actor=cm_user)


@pytest.mark.django_db
def test_stage_guard_runs_before_any_write(project, cm_user):
    seen = []

    def guard(step):
        seen.append(step.step_name)
        raise RuntimeError("stop")

    with pytest.raises(RuntimeError):
        engine.advance(project.pk, actor=cm_user, stage_guard=guard)

    assert seen == ["Draft"]
    project.refresh_from_db()
    assert project.current_stage == "Draft"
    assert project.workflow_version == 0
    assert not AuditLog.objects.filter(action="ADVANCE_WORKFLOW").exists()


# ---------------------------------------------------------
# Move back
# ---------------------------------------------------------
@pytest.mark.django_db
def test_move_back_from_first_stage_is_rejected(project, cm_user):
    with pytest.raises(InvalidTransition) as exc:
        engine.move_back(project.pk, actor=cm_user)

    assert "first stage" in str(exc.value.detail)
    assert _statuses(project.pk)[0] == (1, "IN_PROGRESS")


@pytest.mark.django_db
def test_move_back_then_advance_restores_previous_state(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    engine.advance(project.pk, actor=cm_user)

    project.refresh_from_db()
    stage_before = project.current_stage
    statuses_before = _statuses(project.pk)

    engine.move_back(project.pk, actor=cm_user)
    _assert_mirror(project.pk)
    engine.advance(project.pk, actor=cm_user)
    _assert_mirror(project.pk)

    project.refresh_from_db()
    assert project.current_stage == stage_before
    assert _statuses(project.pk) == statuses_before


@pytest.mark.django_db
def test_move_back_clears_completion_of_reopened_step(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    engine.advance(project.pk, actor=cm_user)
    engine.move_back(project.pk, actor=cm_user)

    freight = project.workflow_steps.get(step_order=2)
    supplier = project.workflow_steps.get(step_order=3)

    assert freight.status == WorkflowStep.Status.IN_PROGRESS
    assert freight.completed_at is None
    assert freight.completed_by is None
    assert supplier.status == WorkflowStep.Status.PENDING
    assert supplier.completed_at is None


@pytest.mark.django_db
def test_deleting_item_move_back_with_comment(project_factory, cm_user):
    project = project_factory(DELETING_ITEM)
    engine.advance(project.pk, actor=cm_user)
    engine.advance(project.pk, actor=cm_user)

    project.refresh_from_db()
    assert project.current_stage == "SSM Review"

    snapshot = engine.move_back(project.pk, actor=cm_user, comment="reverting")

    assert snapshot.current_step.step_name == "Impact Analysis"
    assert snapshot.project.current_stage == "Impact Analysis"
    assert Comment.objects.filter(project=project, content="reverting").count() == 1

    log = AuditLog.objects.get(project=project, action="MOVE_BACK_WORKFLOW")
    assert log.changes["from"] == "SSM Review"
    assert log.changes["to"] == "Impact Analysis"
    assert log.changes["comment"] == "reverting"

    assert LifecycleEvent.objects.filter(event_type="WORKFLOW_MOVED_BACK").count() == 1


@pytest.mark.django_db
def test_move_back_reopens_completed_project(project_factory, cm_user):
    project = project_factory(DELETING_ITEM)
    for _ in range(5):
        engine.advance(project.pk, actor=cm_user)

    project.refresh_from_db()
    assert project.status == Project.Status.COMPLETED

    engine.move_back(project.pk, actor=cm_user)

    project.refresh_from_db()
    assert project.status == Project.Status.IN_PROGRESS
    assert project.current_stage == "Archive"
    assert project.completed_at is None
    _assert_mirror(project.pk)


# ---------------------------------------------------------
# Queries
# ---------------------------------------------------------
@pytest.mark.django_db
def test_can_advance_and_can_move_back_reasons(project_factory, cm_user):
    project = project_factory(DELETING_ITEM)

    assert engine.can_advance(project.pk).allowed is True
    back = engine.can_move_back(project.pk)
    assert back.allowed is False
    assert back.reason == "Cannot move back from the first stage"

    for _ in range(5):
        engine.advance(project.pk, actor=cm_user)

    check = engine.can_advance(project.pk)
    assert check.as_dict() == {
        "allowed": False,
        "reason": "Workflow is already at the final stage",
    }
    assert engine.can_move_back(project.pk).allowed is True


@pytest.mark.django_db
def test_no_active_step_blocks_both_directions(cm_user):
    project = Project.objects.create(
        project_number="T-EMPTY",
        name="no steps",
        lifecycle_type=NEW_ITEM,
        created_by=cm_user,
    )

    assert engine.get_current_step(project.pk) is None
    assert engine.can_advance(project.pk).reason == "No active workflow step"
    assert engine.can_move_back(project.pk).allowed is False

    with pytest.raises(InvalidTransition):
        engine.advance(project.pk, actor=cm_user)


@pytest.mark.django_db
def test_get_workflow_status_lists_steps_in_order(project, cm_user):
    engine.advance(project.pk, actor=cm_user)

    snapshot = engine.get_workflow_status(project.pk)

    assert [s.step_order for s in snapshot.steps] == list(range(1, 9))
    assert snapshot.current_step.step_name == "Freight Strategy"
    assert snapshot.project.current_stage == "Freight Strategy"
