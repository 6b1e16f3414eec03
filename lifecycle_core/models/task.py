# lifecycle_core/models/task.py

from django.conf import settings
from django.db import models

from lifecycle_core.models.core import Project, TimeStampedModel, WorkflowStep


class Task(TimeStampedModel):
    """
    Work item for the role that owns a workflow stage.

    Stage tasks are opened and closed by the workflow engine inside the
    transition transaction. `assigned_to` narrows a task to one user;
    otherwise every holder of `assigned_role` sees it.
    """

    class Type(models.TextChoices):
        APPROVAL = "APPROVAL", "Approval"
        REVIEW = "REVIEW", "Review"
        ACTION = "ACTION", "Action"

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"
        CANCELLED = "CANCELLED", "Cancelled"
        OVERDUE = "OVERDUE", "Overdue"

    class Priority(models.TextChoices):
        LOW = "LOW", "Low"
        MEDIUM = "MEDIUM", "Medium"
        HIGH = "HIGH", "High"
        URGENT = "URGENT", "Urgent"

    OPEN_STATUSES = (Status.PENDING, Status.IN_PROGRESS, Status.OVERDUE)

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="tasks",
    )
    workflow_step = models.ForeignKey(
        WorkflowStep,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tasks",
    )

    task_type = models.CharField(max_length=20, choices=Type.choices, default=Type.APPROVAL)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="lifecycle_tasks",
    )
    assigned_role = models.CharField(max_length=100, null=True, blank=True, db_index=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    due_date = models.DateTimeField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="completed_lifecycle_tasks",
    )
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["assigned_role", "status"], name="task_role_status_idx"),
        ]

    @property
    def is_open(self) -> bool:
        return self.status in self.OPEN_STATUSES

    def __str__(self):
        return f"{self.title} [{self.status}]"
