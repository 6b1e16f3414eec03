# lifecycle_core/workflows/side_effects.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db import transaction

from lifecycle_core.models import AuditLog, Comment, LifecycleEvent

logger = logging.getLogger(__name__)


# Audit actions / entity types
ADVANCE_WORKFLOW = "ADVANCE_WORKFLOW"
MOVE_BACK_WORKFLOW = "MOVE_BACK_WORKFLOW"
CREATE_PROJECT = "CREATE_PROJECT"
UPDATE_PROJECT = "UPDATE_PROJECT"
UPDATE_ROLE_PERMISSIONS = "UPDATE_ROLE_PERMISSIONS"
COMPLETE_TASK = "COMPLETE_TASK"

ENTITY_WORKFLOW = "WORKFLOW"
ENTITY_PROJECT = "PROJECT"
ENTITY_ROLE = "ROLE"
ENTITY_TASK = "TASK"

# Lifecycle event types
WORKFLOW_ADVANCED = "WORKFLOW_ADVANCED"
WORKFLOW_MOVED_BACK = "WORKFLOW_MOVED_BACK"
PROJECT_CREATED = "PROJECT_CREATED"


def display_name(user) -> str:
    if user is None:
        return "system"
    full = (user.get_full_name() or "").strip() if hasattr(user, "get_full_name") else ""
    return full or user.get_username()


def record_audit(
    *,
    action: str,
    entity_type: str,
    entity_id: Any = "",
    user=None,
    project=None,
    changes: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Append one AuditLog row.

    Called inside the caller's transaction; a failure here rolls the
    surrounding change back.
    """
    return AuditLog.objects.create(
        project=project,
        user=user,
        action=action,
        entity_type=entity_type,
        entity_id="" if entity_id is None else str(entity_id),
        changes=changes or {},
    )


def add_transition_comment(*, project, user, content: str) -> Optional[Comment]:
    content = (content or "").strip()
    if not content:
        return None
    return Comment.objects.create(
        project=project,
        user=user,
        user_name=display_name(user),
        content=content,
        is_internal=True,
    )


def enqueue_lifecycle_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: Any,
    payload: Optional[Dict[str, Any]] = None,
) -> LifecycleEvent:
    """
    Write a PENDING outbox row and dispatch it once the transaction commits.

    If the transaction rolls back, neither the row nor the dispatch survive.
    Rows whose dispatch is lost are picked up by drain_lifecycle_outbox.
    """
    event = LifecycleEvent.objects.create(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        payload=payload or {},
    )
    event_id = event.pk
    transaction.on_commit(lambda: dispatch_lifecycle_event(event_id))
    return event


def dispatch_lifecycle_event(event_id: int) -> bool:
    """
    Hand an outbox row to Celery. Broker errors are logged, never raised:
    the transition has already committed and the row stays PENDING.
    """
    from lifecycle_core.tasks import process_lifecycle_event

    try:
        process_lifecycle_event.delay(event_id)
    except Exception:
        logger.exception("Failed to dispatch lifecycle event %s", event_id)
        return False
    return True
