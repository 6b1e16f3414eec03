# lifecycle_core/workflows/events.py
"""
Lifecycle event outbox processing.

Rows are written PENDING inside the transition transaction
(see side_effects.enqueue_lifecycle_event) and processed here, outside it:

    PENDING -> PROCESSING -> COMPLETED
                          -> FAILED (error_message set)

Handler failures are recorded on the row and logged. They never reach the
request that caused the transition.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from django.db import transaction
from django.utils import timezone

from lifecycle_core.models import LifecycleEvent, Project, UserRole, WorkflowStep
from lifecycle_core.workflows.side_effects import (
    PROJECT_CREATED,
    WORKFLOW_ADVANCED,
    WORKFLOW_MOVED_BACK,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[LifecycleEvent], None]

_HANDLERS: Dict[str, EventHandler] = {}


def register(event_type: str):
    def decorator(fn: EventHandler) -> EventHandler:
        _HANDLERS[event_type] = fn
        return fn
    return decorator


def handler_for(event_type: str) -> Optional[EventHandler]:
    return _HANDLERS.get(event_type)


# ===============================================================
# Handlers
# ===============================================================

def _stage_recipients(project: Project, stage_name: str, step_order: Optional[int]) -> List[int]:
    qs = WorkflowStep.objects.filter(project_id=project.pk, step_name=stage_name)
    if step_order is not None:
        qs = qs.filter(step_order=step_order)
    step = qs.first()

    if step is None or not step.required_role:
        return [project.created_by_id]

    return sorted(
        UserRole.objects.filter(role__name=step.required_role)
        .values_list("user_id", flat=True)
    )


@register(WORKFLOW_ADVANCED)
@register(WORKFLOW_MOVED_BACK)
def _notify_stage_owners(event: LifecycleEvent) -> None:
    """
    Resolve who now owns the project and record the recipients on the event.
    Delivery itself belongs to the notification service.
    """
    project = Project.objects.filter(pk=event.entity_id).first()
    if project is None:
        raise LookupError(f"Project {event.entity_id} no longer exists")

    payload = dict(event.payload or {})
    recipients = _stage_recipients(project, payload.get("toStage", ""), payload.get("stepOrder"))
    payload["recipients"] = recipients
    event.payload = payload

    logger.info(
        "%s for project %s: %r -> %r, %d recipient(s)",
        event.event_type,
        project.project_number,
        payload.get("fromStage"),
        payload.get("toStage"),
        len(recipients),
    )


@register(PROJECT_CREATED)
def _project_created(event: LifecycleEvent) -> None:
    project = Project.objects.filter(pk=event.entity_id).first()
    if project is None:
        raise LookupError(f"Project {event.entity_id} no longer exists")

    payload = dict(event.payload or {})
    payload["recipients"] = _stage_recipients(project, project.current_stage, 1)
    event.payload = payload


# ===============================================================
# Processing
# ===============================================================

def _claim(event_id) -> Optional[LifecycleEvent]:
    with transaction.atomic():
        event = LifecycleEvent.objects.select_for_update().filter(pk=event_id).first()
        if event is None:
            logger.warning("Lifecycle event %s not found", event_id)
            return None
        if event.status != LifecycleEvent.Status.PENDING:
            logger.info("Lifecycle event %s already %s, skipping", event_id, event.status)
            return None
        event.status = LifecycleEvent.Status.PROCESSING
        event.save(update_fields=["status"])
        return event


def process_event(event_id) -> Optional[LifecycleEvent]:
    """
    Process one PENDING event. Returns the event, or None when it was missing
    or already claimed by another worker.
    """
    event = _claim(event_id)
    if event is None:
        return None

    handler = handler_for(event.event_type)
    try:
        if handler is None:
            logger.info("No handler for lifecycle event type %s", event.event_type)
        else:
            handler(event)
    except Exception as exc:
        logger.exception("Lifecycle event %s (%s) failed", event.pk, event.event_type)
        event.status = LifecycleEvent.Status.FAILED
        event.error_message = str(exc) or exc.__class__.__name__
        event.processed_at = timezone.now()
        event.save(update_fields=["status", "error_message", "processed_at"])
        return event

    event.status = LifecycleEvent.Status.COMPLETED
    event.error_message = ""
    event.processed_at = timezone.now()
    event.save(update_fields=["status", "payload", "error_message", "processed_at"])
    return event


def pending_events(*, limit: int = 500, older_than_seconds: int = 0):
    qs = LifecycleEvent.objects.filter(status=LifecycleEvent.Status.PENDING)
    if older_than_seconds:
        qs = qs.filter(created_at__lte=timezone.now() - timedelta(seconds=older_than_seconds))
    return qs.order_by("created_at", "id")[:limit]


def entity_events(entity_type: str, entity_id):
    return LifecycleEvent.objects.filter(
        entity_type=entity_type,
        entity_id=str(entity_id),
    ).order_by("-created_at", "-id")
