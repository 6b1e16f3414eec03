# lifecycle_core/services/projects.py
from __future__ import annotations

import logging
import random

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from rest_framework.exceptions import APIException

from lifecycle_core.models import Project, WorkflowStep
from lifecycle_core.permissions import Caller
from lifecycle_core.workflows.engine import initialize_workflow
from lifecycle_core.workflows.side_effects import (
    CREATE_PROJECT,
    ENTITY_PROJECT,
    PROJECT_CREATED,
    UPDATE_PROJECT,
    enqueue_lifecycle_event,
    record_audit,
)

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 20


def generate_project_number(now=None) -> str:
    """
    `<prefix>-<year>-<4 random digits>`, retried until unused.
    """
    prefix = getattr(settings, "PROJECT_NUMBER_PREFIX", "ISH")
    year = (now or timezone.now()).year

    for _ in range(MAX_NUMBER_ATTEMPTS):
        candidate = f"{prefix}-{year}-{random.randint(0, 9999):04d}"
        if not Project.objects.filter(project_number=candidate).exists():
            return candidate

    raise APIException("Could not allocate a unique project number. Retry later.")


@transaction.atomic
def create_project(*, user, name: str, lifecycle_type: str, description: str = "", organization_id=None) -> Project:
    """
    Create a project and its workflow steps in one transaction.
    """
    project = Project.objects.create(
        project_number=generate_project_number(),
        name=name,
        description=description or "",
        lifecycle_type=lifecycle_type,
        status=Project.Status.DRAFT,
        created_by=user,
        organization_id=organization_id,
    )

    initialize_workflow(project.pk, project.lifecycle_type)
    project.refresh_from_db()

    record_audit(
        action=CREATE_PROJECT,
        entity_type=ENTITY_PROJECT,
        entity_id=project.pk,
        user=user,
        project=project,
        changes={
            "project_number": project.project_number,
            "name": project.name,
            "lifecycle_type": project.lifecycle_type,
        },
    )
    enqueue_lifecycle_event(
        event_type=PROJECT_CREATED,
        entity_type=ENTITY_PROJECT,
        entity_id=project.pk,
        payload={
            "projectNumber": project.project_number,
            "lifecycleType": project.lifecycle_type,
            "userId": user.pk,
        },
    )

    logger.info(
        "Created project %s (%s) for user %s",
        project.project_number,
        project.lifecycle_type,
        user.pk,
    )
    return project


EDITABLE_FIELDS = ("name", "description", "organization_id")


@transaction.atomic
def update_project(*, project: Project, user, changes: dict) -> Project:
    """
    Update descriptive fields only. Workflow-owned fields are never touched
    here, so a concurrent transition cannot be overwritten.
    """
    changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
    if not changes:
        return project

    before = Project.objects.filter(pk=project.pk).values(*changes.keys()).first() or {}
    Project.objects.filter(pk=project.pk).update(updated_at=timezone.now(), **changes)
    project.refresh_from_db()

    record_audit(
        action=UPDATE_PROJECT,
        entity_type=ENTITY_PROJECT,
        entity_id=project.pk,
        user=user,
        project=project,
        changes={"before": before, "after": changes},
    )
    logger.info("Updated project %s fields %s", project.project_number, sorted(changes))
    return project


def visible_projects(caller: Caller, has_view_all: bool):
    """
    Projects the caller may list: everything with a view-all grant,
    otherwise the caller's own projects.
    """
    qs = Project.objects.select_related("created_by")
    if caller.is_admin or has_view_all:
        return qs
    return qs.filter(created_by_id=caller.user_id)


def assigned_projects(caller: Caller):
    """
    Projects whose active step is owned by the caller's role.
    Admins see every project that is not completed.
    """
    qs = Project.objects.select_related("created_by")
    if caller.is_admin:
        return qs.exclude(status=Project.Status.COMPLETED)
    if not caller.role_name:
        return qs.none()

    active = WorkflowStep.objects.filter(
        status=WorkflowStep.Status.IN_PROGRESS,
        required_role=caller.role_name,
    ).values("project_id")
    return qs.filter(Q(pk__in=active)).exclude(status=Project.Status.COMPLETED)
