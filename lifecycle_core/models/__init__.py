from lifecycle_core.models.core import TimeStampedModel, Project, WorkflowStep, Comment
from lifecycle_core.models.access import Role, Permission, RolePermission, UserRole
from lifecycle_core.models.task import Task
from lifecycle_core.models.workflow_event import AuditLog, LifecycleEvent

__all__ = [
    "TimeStampedModel",
    "Project",
    "WorkflowStep",
    "Comment",
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "Task",
    "AuditLog",
    "LifecycleEvent",
]
