# lifecycle_core/models/core.py

from django.conf import settings
from django.db import models
from django.db.models import Q

from lifecycle_core.workflows.guards import WorkflowWriteGuardMixin


# ============================================================
# Base
# ============================================================
class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


# ============================================================
# Project
# ============================================================
class Project(WorkflowWriteGuardMixin, TimeStampedModel):
    """
    A procurement item lifecycle project.

    `current_stage` mirrors the name of the single IN_PROGRESS workflow step.
    `current_stage`, `status` and `completed_at` are owned by the workflow
    engine; see lifecycle_core.workflows.engine.
    """

    WORKFLOW_FIELDS = ("current_stage", "status")

    class LifecycleType(models.TextChoices):
        NEW_ITEM = "NEW_ITEM", "New item"
        TRANSITIONING_ITEM = "TRANSITIONING_ITEM", "Transitioning item"
        DELETING_ITEM = "DELETING_ITEM", "Deleting item"

    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        ON_HOLD = "ON_HOLD", "On hold"
        COMPLETED = "COMPLETED", "Completed"
        REJECTED = "REJECTED", "Rejected"

    project_number = models.CharField(max_length=32, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    lifecycle_type = models.CharField(
        max_length=32,
        choices=LifecycleType.choices,
        default=LifecycleType.NEW_ITEM,
        db_index=True,
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    current_stage = models.CharField(max_length=100, default="Draft", db_index=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="projects_created",
    )
    organization_id = models.PositiveBigIntegerField(null=True, blank=True, db_index=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    # Optimistic concurrency token, bumped by every workflow transition.
    workflow_version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.project_number} - {self.name}"


# ============================================================
# Workflow steps
# ============================================================
class WorkflowStep(TimeStampedModel):
    """
    Per-project instance of one registry stage.

    Rows are created in bulk when the workflow is initialized and are never
    reordered or deleted.
    """

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        IN_PROGRESS = "IN_PROGRESS", "In progress"
        COMPLETED = "COMPLETED", "Completed"
        REJECTED = "REJECTED", "Rejected"
        SKIPPED = "SKIPPED", "Skipped"

    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="workflow_steps",
    )
    step_name = models.CharField(max_length=100)
    step_order = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    required_role = models.CharField(max_length=100, null=True, blank=True)
    description = models.CharField(max_length=255, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="completed_workflow_steps",
    )

    class Meta:
        ordering = ["project_id", "step_order"]
        constraints = [
            models.UniqueConstraint(
                fields=["project", "step_order"],
                name="workflow_step_unique_order",
            ),
            models.UniqueConstraint(
                fields=["project"],
                condition=Q(status="IN_PROGRESS"),
                name="workflow_step_single_active",
            ),
        ]

    def __str__(self):
        return f"{self.project_id}#{self.step_order} {self.step_name} ({self.status})"


# ============================================================
# Comments
# ============================================================
class Comment(models.Model):
    project = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="comments",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    user_name = models.CharField(max_length=255)
    content = models.TextField()
    is_internal = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.user_name} on {self.project_id}: {self.content[:40]}"
