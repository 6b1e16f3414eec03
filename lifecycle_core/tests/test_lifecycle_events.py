# lifecycle_core/tests/test_lifecycle_events.py

import logging
from datetime import timedelta
from io import StringIO
from types import SimpleNamespace

import pytest
from django.core.management import call_command
from django.utils import timezone

from lifecycle_core import tasks
from lifecycle_core.models import LifecycleEvent, RolePermission
from lifecycle_core.workflows import CATEGORY_MANAGER, engine, events, side_effects
from lifecycle_core.workflows.runtime import InvalidTransition


def _advanced_event():
    return LifecycleEvent.objects.get(event_type="WORKFLOW_ADVANCED")


# ---------------------------------------------------------
# Processing
# ---------------------------------------------------------
@pytest.mark.django_db
def test_process_event_records_stage_owner_recipients(project, cm_user, logistics_user):
    engine.advance(project.pk, actor=cm_user)

    event = events.process_event(_advanced_event().pk)

    assert event.status == LifecycleEvent.Status.COMPLETED
    assert event.processed_at is not None
    event.refresh_from_db()
    assert event.payload["recipients"] == [logistics_user.pk]
    assert event.payload["toStage"] == "Freight Strategy"


@pytest.mark.django_db
def test_handler_failure_marks_event_failed(project, cm_user, monkeypatch):
    def boom(event):
        raise RuntimeError("notification service down")

    monkeypatch.setitem(events._HANDLERS, "WORKFLOW_ADVANCED", boom)
    engine.advance(project.pk, actor=cm_user)

    event = events.process_event(_advanced_event().pk)

    event.refresh_from_db()
    assert event.status == LifecycleEvent.Status.FAILED
    assert event.error_message == "notification service down"
    assert event.processed_at is not None

    # The transition itself is untouched.
    project.refresh_from_db()
    assert project.current_stage == "Freight Strategy"


@pytest.mark.django_db
def test_already_processed_event_is_skipped(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    event_id = _advanced_event().pk

    assert events.process_event(event_id) is not None
    assert events.process_event(event_id) is None
    assert events.process_event(987654) is None


@pytest.mark.django_db
def test_event_for_deleted_project_fails(cm_user):
    event = LifecycleEvent.objects.create(
        event_type="WORKFLOW_ADVANCED",
        entity_type="PROJECT",
        entity_id="424242",
        payload={"toStage": "Freight Strategy"},
    )

    events.process_event(event.pk)

    event.refresh_from_db()
    assert event.status == LifecycleEvent.Status.FAILED
    assert "424242" in event.error_message


# ---------------------------------------------------------
# Dispatch
# ---------------------------------------------------------
@pytest.mark.django_db
def test_dispatch_happens_only_after_commit(project, cm_user, monkeypatch, django_capture_on_commit_callbacks):
    dispatched = []
    monkeypatch.setattr(side_effects, "dispatch_lifecycle_event", lambda event_id: dispatched.append(event_id))

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        engine.advance(project.pk, actor=cm_user)
        assert dispatched == []

    assert len(callbacks) == 1
    assert dispatched == [_advanced_event().pk]


@pytest.mark.django_db
def test_failed_transition_dispatches_nothing(project, cm_user, monkeypatch, django_capture_on_commit_callbacks):
    dispatched = []
    monkeypatch.setattr(side_effects, "dispatch_lifecycle_event", lambda event_id: dispatched.append(event_id))

    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(InvalidTransition):
            engine.move_back(project.pk, actor=cm_user)

    assert callbacks == []
    assert dispatched == []
    assert not LifecycleEvent.objects.filter(event_type="WORKFLOW_MOVED_BACK").exists()


@pytest.mark.django_db
def test_eager_dispatch_processes_the_event(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    event = _advanced_event()

    assert side_effects.dispatch_lifecycle_event(event.pk) is True

    event.refresh_from_db()
    assert event.status == LifecycleEvent.Status.COMPLETED


@pytest.mark.django_db
def test_broker_error_is_logged_and_event_stays_pending(project, cm_user, monkeypatch, caplog):
    def unavailable(event_id):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr(tasks, "process_lifecycle_event", SimpleNamespace(delay=unavailable))
    engine.advance(project.pk, actor=cm_user)
    event = _advanced_event()

    with caplog.at_level(logging.ERROR, logger="lifecycle_core"):
        assert side_effects.dispatch_lifecycle_event(event.pk) is False

    assert "Failed to dispatch lifecycle event" in caplog.text
    event.refresh_from_db()
    assert event.status == LifecycleEvent.Status.PENDING


# ---------------------------------------------------------
# Outbox recovery
# ---------------------------------------------------------
@pytest.mark.django_db
def test_drain_task_redispatches_only_stale_pending_rows(project, cm_user, monkeypatch):
    engine.advance(project.pk, actor=cm_user)
    stale = _advanced_event()
    LifecycleEvent.objects.filter(pk=stale.pk).update(
        created_at=timezone.now() - timedelta(minutes=10),
    )
    LifecycleEvent.objects.filter(event_type="PROJECT_CREATED").update(
        status=LifecycleEvent.Status.COMPLETED,
    )
    engine.advance(project.pk, actor=cm_user)

    dispatched = []

    def fake_dispatch(event_id):
        dispatched.append(event_id)
        return True

    monkeypatch.setattr(tasks, "dispatch_lifecycle_event", fake_dispatch)

    assert tasks.drain_lifecycle_outbox(limit=10, older_than_seconds=60) == 1
    assert dispatched == [stale.pk]


@pytest.mark.django_db
def test_drain_command_processes_pending_events(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    assert LifecycleEvent.objects.filter(status=LifecycleEvent.Status.PENDING).count() == 2

    out = StringIO()
    call_command("drain_lifecycle_events", stdout=out)

    assert "Processed 2 pending event(s): 2 completed, 0 failed" in out.getvalue()
    assert not LifecycleEvent.objects.filter(status=LifecycleEvent.Status.PENDING).exists()


@pytest.mark.django_db
def test_process_task_returns_final_status(project, cm_user):
    engine.advance(project.pk, actor=cm_user)
    assert tasks.process_lifecycle_event(_advanced_event().pk) == "COMPLETED"


# ---------------------------------------------------------
# Seeding
# ---------------------------------------------------------
@pytest.mark.django_db
def test_seed_access_command_is_idempotent(roles):
    out = StringIO()
    call_command("seed_access", stdout=out)
    assert "Created 0 role(s), 0 permission(s), 0 grant(s)" in out.getvalue()

    RolePermission.objects.filter(
        role=roles[CATEGORY_MANAGER],
        permission__name="ADVANCE_WORKFLOW",
    ).delete()

    out = StringIO()
    call_command("seed_access", stdout=out)
    assert "Created 0 role(s), 0 permission(s), 1 grant(s)" in out.getvalue()
