from django.core.management.base import BaseCommand

from lifecycle_core.models import LifecycleEvent
from lifecycle_core.workflows.events import pending_events, process_event


class Command(BaseCommand):
    help = "Process PENDING lifecycle events synchronously (outbox recovery)"

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=500, help="Maximum events to process")
        parser.add_argument(
            "--older-than",
            type=int,
            default=0,
            help="Only events created at least this many seconds ago",
        )

    def handle(self, *args, **options):
        ids = [
            event.pk
            for event in pending_events(
                limit=options["limit"],
                older_than_seconds=options["older_than"],
            )
        ]

        completed = failed = 0
        for event_id in ids:
            event = process_event(event_id)
            if event is None:
                continue
            if event.status == LifecycleEvent.Status.COMPLETED:
                completed += 1
            else:
                failed += 1

        self.stdout.write(
            f"Processed {len(ids)} pending event(s): {completed} completed, {failed} failed"
        )
