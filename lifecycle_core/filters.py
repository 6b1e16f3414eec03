# lifecycle_core/filters.py
import django_filters as df

from .models import AuditLog, Project, Task


class ProjectFilter(df.FilterSet):
    name = df.CharFilter(field_name="name", lookup_expr="icontains")
    project_number = df.CharFilter(field_name="project_number", lookup_expr="icontains")
    current_stage = df.CharFilter(field_name="current_stage", lookup_expr="iexact")
    created_at = df.DateFromToRangeFilter()

    class Meta:
        model = Project
        fields = ["name", "project_number", "lifecycle_type", "status", "current_stage", "created_by", "created_at"]


class AuditLogFilter(df.FilterSet):
    project = df.NumberFilter(field_name="project_id")
    user = df.NumberFilter(field_name="user_id")
    action = df.CharFilter(field_name="action", lookup_expr="iexact")
    entity_type = df.CharFilter(field_name="entity_type", lookup_expr="iexact")
    created_at = df.DateFromToRangeFilter()

    class Meta:
        model = AuditLog
        fields = ["project", "user", "action", "entity_type", "entity_id", "created_at"]


class TaskFilter(df.FilterSet):
    project = df.NumberFilter(field_name="project_id")
    status = df.CharFilter(field_name="status", lookup_expr="iexact")
    priority = df.CharFilter(field_name="priority", lookup_expr="iexact")
    assigned_role = df.CharFilter(field_name="assigned_role", lookup_expr="iexact")

    class Meta:
        model = Task
        fields = ["project", "status", "priority", "task_type", "assigned_role"]
