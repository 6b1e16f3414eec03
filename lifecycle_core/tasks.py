# lifecycle_core/tasks.py
from __future__ import annotations

import logging

from celery import shared_task

from lifecycle_core.workflows.events import pending_events, process_event
from lifecycle_core.workflows.side_effects import dispatch_lifecycle_event

logger = logging.getLogger(__name__)


@shared_task
def process_lifecycle_event(event_id: int) -> str | None:
    event = process_event(event_id)
    return event.status if event else None


@shared_task
def drain_lifecycle_outbox(limit: int = 500, older_than_seconds: int = 60) -> int:
    """
    Re-dispatch PENDING outbox rows whose on-commit dispatch was lost.
    """
    ids = [
        event.pk
        for event in pending_events(limit=limit, older_than_seconds=older_than_seconds)
    ]
    dispatched = sum(1 for event_id in ids if dispatch_lifecycle_event(event_id))
    if ids:
        logger.info("Re-dispatched %d/%d pending lifecycle events", dispatched, len(ids))
    return dispatched
