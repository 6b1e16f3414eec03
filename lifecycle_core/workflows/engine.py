# lifecycle_core/workflows/engine.py
"""
Authoritative workflow state machine.

All stage transitions MUST go through this module. Never update
WorkflowStep.status or Project.current_stage / Project.status directly in
views or serializers.

Per project the machine is a line of positions 1..N (N = registry length for
the project's lifecycle type). The only moves are i -> i+1 (advance, blocked at
N) and i -> i-1 (move back, blocked at 1).

Every transition runs in one transaction:
  1) lock the project row and check the optional expected_version
  2) re-validate the move against the locked state
  3) run the caller's stage guard (authorization is the caller's concern)
  4) rewrite the two affected steps
  5) update the project with a version-conditional UPDATE
  6) close the left stage's tasks and open one for the new stage
  7) write audit log, optional comment and outbox event
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound

from lifecycle_core.models import Project, Task, WorkflowStep
from lifecycle_core.workflows import is_terminal_order, stages_for
from lifecycle_core.workflows.runtime import InvalidTransition, TransitionConflict
from lifecycle_core.services.stage_tasks import close_stage_tasks, open_stage_task
from lifecycle_core.workflows.side_effects import (
    ADVANCE_WORKFLOW,
    ENTITY_PROJECT,
    ENTITY_WORKFLOW,
    MOVE_BACK_WORKFLOW,
    WORKFLOW_ADVANCED,
    WORKFLOW_MOVED_BACK,
    add_transition_comment,
    enqueue_lifecycle_event,
    record_audit,
)

logger = logging.getLogger(__name__)

StageGuard = Callable[[WorkflowStep], None]


# ===============================================================
# Result types
# ===============================================================

@dataclass(frozen=True)
class TransitionCheck:
    allowed: bool
    reason: str = ""

    def as_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason}


@dataclass
class WorkflowSnapshot:
    project: Project
    current_step: Optional[WorkflowStep]
    steps: List[WorkflowStep] = field(default_factory=list)


# ===============================================================
# Helpers
# ===============================================================

def _get_project(project_id, *, lock: bool = False) -> Project:
    qs = Project.objects.all()
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=project_id)
    except Project.DoesNotExist:
        raise NotFound("Project not found.")


def _current_step(project_id) -> Optional[WorkflowStep]:
    # Lowest order wins if more than one row is active.
    return (
        WorkflowStep.objects.filter(
            project_id=project_id,
            status=WorkflowStep.Status.IN_PROGRESS,
        )
        .order_by("step_order")
        .first()
    )


def _check_expected_version(project: Project, expected_version: Optional[int]) -> None:
    if expected_version is None:
        return
    if int(expected_version) != project.workflow_version:
        logger.warning(
            "Stale workflow transition on project %s: expected version %s, found %s",
            project.pk,
            expected_version,
            project.workflow_version,
        )
        raise TransitionConflict(
            f"Workflow version mismatch: expected {expected_version}, "
            f"current is {project.workflow_version}. Reload and retry."
        )


def _apply_project_state(project: Project, *, now, **fields) -> int:
    """
    Write workflow-owned project fields, guarded by the version token.

    Queryset.update() skips Project.save(), so the write guard does not apply
    here. Returns the new workflow_version.
    """
    updated = Project.objects.filter(
        pk=project.pk,
        workflow_version=project.workflow_version,
    ).update(
        workflow_version=F("workflow_version") + 1,
        updated_at=now,
        **fields,
    )
    if updated != 1:
        logger.warning("Concurrent workflow update detected on project %s", project.pk)
        raise TransitionConflict()
    return project.workflow_version + 1


def _advance_check(project: Project, step: Optional[WorkflowStep]) -> TransitionCheck:
    if step is None:
        return TransitionCheck(False, "No active workflow step")
    if is_terminal_order(project.lifecycle_type, step.step_order):
        return TransitionCheck(False, "Workflow is already at the final stage")
    return TransitionCheck(True)


def _move_back_check(project: Project, step: Optional[WorkflowStep]) -> TransitionCheck:
    if step is None:
        return TransitionCheck(False, "No active workflow step")
    if step.step_order <= 1:
        return TransitionCheck(False, "Cannot move back from the first stage")
    return TransitionCheck(True)


def _step_at(project_id, order: int) -> WorkflowStep:
    step = WorkflowStep.objects.filter(project_id=project_id, step_order=order).first()
    if step is None:
        raise InvalidTransition(f"Workflow step {order} does not exist for this project.")
    return step


# ===============================================================
# Queries
# ===============================================================

def get_current_step(project_id) -> Optional[WorkflowStep]:
    _get_project(project_id)
    return _current_step(project_id)


def can_advance(project_id) -> TransitionCheck:
    """
    Topology check only. Does not look at the caller.
    """
    project = _get_project(project_id)
    return _advance_check(project, _current_step(project.pk))


def can_move_back(project_id) -> TransitionCheck:
    project = _get_project(project_id)
    return _move_back_check(project, _current_step(project.pk))


def get_workflow_status(project_id) -> WorkflowSnapshot:
    project = _get_project(project_id)
    steps = list(
        WorkflowStep.objects.filter(project_id=project.pk)
        .select_related("completed_by")
        .order_by("step_order")
    )
    current = next(
        (s for s in steps if s.status == WorkflowStep.Status.IN_PROGRESS),
        None,
    )
    return WorkflowSnapshot(project=project, current_step=current, steps=steps)


# ===============================================================
# Initialization
# ===============================================================

def initialize_workflow(project_id, lifecycle_type: Optional[str] = None) -> List[WorkflowStep]:
    """
    Create one WorkflowStep per registry stage. Step 1 starts IN_PROGRESS,
    the rest PENDING. Refuses to run twice for the same project.
    """
    with transaction.atomic():
        project = _get_project(project_id, lock=True)

        if WorkflowStep.objects.filter(project_id=project.pk).exists():
            raise InvalidTransition("Workflow already initialized for this project.")

        stages = stages_for(lifecycle_type or project.lifecycle_type)
        steps = WorkflowStep.objects.bulk_create(
            [
                WorkflowStep(
                    project=project,
                    step_name=stage.name,
                    step_order=stage.order,
                    required_role=stage.required_role,
                    description=stage.description,
                    status=(
                        WorkflowStep.Status.IN_PROGRESS
                        if stage.order == 1
                        else WorkflowStep.Status.PENDING
                    ),
                )
                for stage in stages
            ]
        )

        if project.current_stage != stages[0].name:
            Project.objects.filter(pk=project.pk).update(
                current_stage=stages[0].name,
                updated_at=timezone.now(),
            )

        first = WorkflowStep.objects.get(project_id=project.pk, step_order=1)
        open_stage_task(project=project, step=first)

    logger.info(
        "Initialized %s workflow for project %s with %d steps",
        project.lifecycle_type,
        project.pk,
        len(steps),
    )
    return steps


# ===============================================================
# Transitions
# ===============================================================

@transaction.atomic
def advance(
    project_id,
    *,
    actor,
    comment: Optional[str] = None,
    expected_version: Optional[int] = None,
    stage_guard: Optional[StageGuard] = None,
) -> WorkflowSnapshot:
    """
    Complete the active step and activate the next one.

    Reaching the registry's terminal stage marks the project COMPLETED.
    """
    project = _get_project(project_id, lock=True)
    _check_expected_version(project, expected_version)

    current = _current_step(project.pk)
    check = _advance_check(project, current)
    if not check.allowed:
        raise InvalidTransition(check.reason)

    if stage_guard is not None:
        stage_guard(current)

    next_step = _step_at(project.pk, current.step_order + 1)
    now = timezone.now()

    # Deactivate before activating: at most one IN_PROGRESS row at any time.
    WorkflowStep.objects.filter(pk=current.pk).update(
        status=WorkflowStep.Status.COMPLETED,
        completed_at=now,
        completed_by=actor,
        updated_at=now,
    )
    WorkflowStep.objects.filter(pk=next_step.pk).update(
        status=WorkflowStep.Status.IN_PROGRESS,
        completed_at=None,
        completed_by=None,
        updated_at=now,
    )

    close_stage_tasks(step=current, actor=actor, status=Task.Status.COMPLETED, now=now)
    open_stage_task(project=project, step=next_step, now=now)

    terminal = is_terminal_order(project.lifecycle_type, next_step.step_order)
    new_version = _apply_project_state(
        project,
        now=now,
        current_stage=next_step.step_name,
        status=Project.Status.COMPLETED if terminal else Project.Status.IN_PROGRESS,
        completed_at=now if terminal else None,
    )

    _record_transition(
        project=project,
        actor=actor,
        from_step=current,
        to_step=next_step,
        comment=comment,
        action=ADVANCE_WORKFLOW,
        event_type=WORKFLOW_ADVANCED,
    )

    logger.info(
        "Project %s advanced %r -> %r by user %s (version %s)%s",
        project.pk,
        current.step_name,
        next_step.step_name,
        getattr(actor, "pk", None),
        new_version,
        " [completed]" if terminal else "",
    )
    return get_workflow_status(project.pk)


@transaction.atomic
def move_back(
    project_id,
    *,
    actor,
    comment: Optional[str] = None,
    expected_version: Optional[int] = None,
    stage_guard: Optional[StageGuard] = None,
) -> WorkflowSnapshot:
    """
    Return the active step to PENDING and reactivate the previous one.

    The project status is forced back to IN_PROGRESS, which also reopens a
    COMPLETED project.
    """
    project = _get_project(project_id, lock=True)
    _check_expected_version(project, expected_version)

    current = _current_step(project.pk)
    check = _move_back_check(project, current)
    if not check.allowed:
        raise InvalidTransition(check.reason)

    if stage_guard is not None:
        stage_guard(current)

    previous = _step_at(project.pk, current.step_order - 1)
    now = timezone.now()

    WorkflowStep.objects.filter(pk=current.pk).update(
        status=WorkflowStep.Status.PENDING,
        completed_at=None,
        completed_by=None,
        updated_at=now,
    )
    WorkflowStep.objects.filter(pk=previous.pk).update(
        status=WorkflowStep.Status.IN_PROGRESS,
        completed_at=None,
        completed_by=None,
        updated_at=now,
    )

    close_stage_tasks(step=current, actor=actor, status=Task.Status.CANCELLED, now=now)
    open_stage_task(project=project, step=previous, now=now)

    new_version = _apply_project_state(
        project,
        now=now,
        current_stage=previous.step_name,
        status=Project.Status.IN_PROGRESS,
        completed_at=None,
    )

    _record_transition(
        project=project,
        actor=actor,
        from_step=current,
        to_step=previous,
        comment=comment,
        action=MOVE_BACK_WORKFLOW,
        event_type=WORKFLOW_MOVED_BACK,
    )

    logger.info(
        "Project %s moved back %r -> %r by user %s (version %s)",
        project.pk,
        current.step_name,
        previous.step_name,
        getattr(actor, "pk", None),
        new_version,
    )
    return get_workflow_status(project.pk)


def _record_transition(*, project, actor, from_step, to_step, comment, action, event_type) -> None:
    comment = (comment or "").strip() or None

    record_audit(
        action=action,
        entity_type=ENTITY_WORKFLOW,
        entity_id=from_step.pk,
        user=actor,
        project=project,
        changes={
            "from": from_step.step_name,
            "to": to_step.step_name,
            "comment": comment,
        },
    )

    if comment:
        add_transition_comment(project=project, user=actor, content=comment)

    enqueue_lifecycle_event(
        event_type=event_type,
        entity_type=ENTITY_PROJECT,
        entity_id=project.pk,
        payload={
            "fromStage": from_step.step_name,
            "toStage": to_step.step_name,
            "stepOrder": to_step.step_order,
            "comment": comment,
            "userId": getattr(actor, "pk", None),
        },
    )
