# lifecycle_core/services/stage_tasks.py
"""
Per-stage tasks.

Whenever a stage with a required role becomes active, one APPROVAL task is
opened for that role. When the stage is left, its open tasks are closed:
COMPLETED on advance, CANCELLED on move back. The engine calls these inside
the transition transaction, so tasks never disagree with the active step.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Case, IntegerField, Q, Value, When
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from lifecycle_core.models import Task, WorkflowStep
from lifecycle_core.permissions import Caller
from lifecycle_core.workflows.side_effects import (
    COMPLETE_TASK,
    ENTITY_TASK,
    record_audit,
)

logger = logging.getLogger(__name__)

_PRIORITY_RANK = Case(
    When(priority=Task.Priority.URGENT, then=Value(0)),
    When(priority=Task.Priority.HIGH, then=Value(1)),
    When(priority=Task.Priority.MEDIUM, then=Value(2)),
    default=Value(3),
    output_field=IntegerField(),
)


def _due_days() -> int:
    return int(getattr(settings, "STAGE_TASK_DUE_DAYS", 7))


# ===============================================================
# Engine hooks
# ===============================================================

def open_stage_task(*, project, step: WorkflowStep, now=None) -> Optional[Task]:
    """
    Open the approval task for a newly active step. Steps without an owning
    role (the terminal stage) get none.
    """
    if not step.required_role:
        return None

    now = now or timezone.now()
    return Task.objects.create(
        project=project,
        workflow_step=step,
        task_type=Task.Type.APPROVAL,
        title=f"Complete: {step.step_name}",
        description=step.description,
        assigned_role=step.required_role,
        priority=Task.Priority.HIGH,
        due_date=now + timedelta(days=_due_days()),
        metadata={"projectNumber": project.project_number, "stepOrder": step.step_order},
    )


def close_stage_tasks(*, step: WorkflowStep, actor, status: str, now=None) -> int:
    now = now or timezone.now()
    fields = {"status": status, "updated_at": now}
    if status == Task.Status.COMPLETED:
        fields.update(completed_at=now, completed_by=actor)

    return Task.objects.filter(
        workflow_step_id=step.pk,
        status__in=Task.OPEN_STATUSES,
    ).update(**fields)


# ===============================================================
# Queries
# ===============================================================

def visible_tasks(caller: Caller):
    """
    Tasks addressed to the caller directly or to the caller's role.
    Admins see every task.
    """
    qs = Task.objects.select_related("project", "assigned_to", "workflow_step")
    if caller.is_admin:
        return qs

    scope = Q(assigned_to_id=caller.user_id)
    if caller.role_name:
        scope |= Q(assigned_to__isnull=True, assigned_role=caller.role_name)
    return qs.filter(scope)


def order_for_worklist(qs):
    return qs.annotate(priority_rank=_PRIORITY_RANK).order_by(
        "priority_rank", "due_date", "-created_at", "-id"
    )


def can_work_on(caller: Caller, task: Task) -> bool:
    if caller.is_admin:
        return True
    if task.assigned_to_id is not None:
        return task.assigned_to_id == caller.user_id
    return bool(caller.role_name) and task.assigned_role == caller.role_name


# ===============================================================
# Commands
# ===============================================================

@transaction.atomic
def complete_task(*, task_id, caller: Caller, actor) -> Task:
    """
    Mark one open task COMPLETED by hand.

    This does not move the workflow; stage tasks close on their own when
    the stage is advanced.
    """
    task = Task.objects.select_for_update().filter(pk=task_id).first()
    # Tasks outside the caller's worklist are reported as missing.
    if task is None or not can_work_on(caller, task):
        raise NotFound("Task not found.")

    if not task.is_open:
        raise ValidationError({"status": f"Task is already {task.status}."})

    now = timezone.now()
    before = task.status
    task.status = Task.Status.COMPLETED
    task.completed_at = now
    task.completed_by = actor
    task.save(update_fields=["status", "completed_at", "completed_by", "updated_at"])

    record_audit(
        action=COMPLETE_TASK,
        entity_type=ENTITY_TASK,
        entity_id=task.pk,
        user=actor,
        project=task.project,
        changes={"title": task.title, "from": before, "to": task.status},
    )
    logger.info("Task %s completed by user %s", task.pk, getattr(actor, "pk", None))
    return task
