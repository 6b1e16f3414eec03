from __future__ import annotations

from typing import Any, Dict, List

from django.contrib.auth.models import User
from rest_framework import serializers

from .models import (
    AuditLog,
    Comment,
    LifecycleEvent,
    Permission,
    Project,
    Role,
    RolePermission,
    Task,
    WorkflowStep,
)
from .workflows import LIFECYCLE_TYPES


# ===============================================================
# Helpers
# ===============================================================

class ImmutableFieldsMixin:
    """
    Blocks updates to selected fields if they appear in incoming validated data.
    """
    immutable_fields: tuple[str, ...] = ()

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        if self.instance is not None and self.immutable_fields:
            for field in self.immutable_fields:
                if field in attrs:
                    raise serializers.ValidationError(
                        {field: "This field is immutable."}
                    )
        return super().validate(attrs)


class UserSlimSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "username", "email")
        read_only_fields = fields


# ===============================================================
# Workflow steps
# ===============================================================

class WorkflowStepSerializer(serializers.ModelSerializer):
    completed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = WorkflowStep
        fields = (
            "id",
            "step_name",
            "step_order",
            "status",
            "required_role",
            "description",
            "completed_at",
            "completed_by",
        )
        read_only_fields = fields


# ===============================================================
# Project
# ===============================================================

class ProjectSerializer(ImmutableFieldsMixin, serializers.ModelSerializer):
    created_by = UserSlimSerializer(read_only=True)
    lifecycle_type = serializers.ChoiceField(choices=LIFECYCLE_TYPES)

    immutable_fields = ("lifecycle_type",)

    class Meta:
        model = Project
        fields = (
            "id",
            "project_number",
            "name",
            "description",
            "lifecycle_type",
            "status",
            "current_stage",
            "organization_id",
            "workflow_version",
            "created_by",
            "completed_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "project_number",
            "status",
            "current_stage",
            "workflow_version",
            "created_by",
            "completed_at",
            "created_at",
            "updated_at",
        )

    def to_internal_value(self, data):
        # Accept "new_item" as well as "NEW_ITEM".
        if hasattr(data, "get") and isinstance(data.get("lifecycle_type"), str):
            data = data.copy()
            data["lifecycle_type"] = data["lifecycle_type"].strip().upper()
        return super().to_internal_value(data)


class ProjectDetailSerializer(ProjectSerializer):
    workflow_steps = WorkflowStepSerializer(many=True, read_only=True)

    class Meta(ProjectSerializer.Meta):
        fields = ProjectSerializer.Meta.fields + ("workflow_steps",)
        read_only_fields = ProjectSerializer.Meta.read_only_fields + ("workflow_steps",)


# ===============================================================
# Workflow transitions
# ===============================================================

class TransitionRequestSerializer(serializers.Serializer):
    comment = serializers.CharField(
        required=False,
        allow_blank=True,
        allow_null=True,
        max_length=5000,
    )
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class WorkflowStatusSerializer(serializers.Serializer):
    """
    Serializes engine.WorkflowSnapshot.
    """
    project = ProjectSerializer(read_only=True)
    current_step = WorkflowStepSerializer(read_only=True, allow_null=True)
    stages = WorkflowStepSerializer(source="steps", many=True, read_only=True)


class WorkflowStageSerializer(serializers.Serializer):
    name = serializers.CharField()
    order = serializers.IntegerField()
    required_role = serializers.CharField(allow_null=True)
    description = serializers.CharField()


class WorkflowDefinitionSerializer(serializers.Serializer):
    lifecycle_type = serializers.CharField()
    stages = WorkflowStageSerializer(many=True)
    terminal_stage = serializers.CharField()


# ===============================================================
# Comments / events / audit (READ-ONLY)
# ===============================================================

class CommentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Comment
        fields = ("id", "project", "user", "user_name", "content", "is_internal", "created_at")
        read_only_fields = fields


class LifecycleEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = LifecycleEvent
        fields = (
            "id",
            "event_type",
            "entity_type",
            "entity_id",
            "payload",
            "status",
            "error_message",
            "created_at",
            "processed_at",
        )
        read_only_fields = fields


class AuditLogSerializer(serializers.ModelSerializer):
    user_username = serializers.CharField(source="user.username", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = (
            "id",
            "project",
            "user",
            "user_username",
            "action",
            "entity_type",
            "entity_id",
            "changes",
            "created_at",
        )
        read_only_fields = fields


# ===============================================================
# Roles / permissions
# ===============================================================

class PermissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Permission
        fields = ("id", "name", "category", "description")
        read_only_fields = fields


class RolePermissionSerializer(serializers.ModelSerializer):
    permission_id = serializers.IntegerField(source="permission.id", read_only=True)
    permission_name = serializers.CharField(source="permission.name", read_only=True)
    category = serializers.CharField(source="permission.category", read_only=True)

    class Meta:
        model = RolePermission
        fields = ("permission_id", "permission_name", "category", "granted")
        read_only_fields = fields


class RoleSerializer(serializers.ModelSerializer):
    user_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = ("id", "name", "description", "is_admin", "user_count")
        read_only_fields = fields

    def get_user_count(self, obj: Role) -> int:
        return obj.user_roles.count()


class RoleDetailSerializer(RoleSerializer):
    permissions = serializers.SerializerMethodField()

    class Meta(RoleSerializer.Meta):
        fields = RoleSerializer.Meta.fields + ("permissions",)
        read_only_fields = fields

    def get_permissions(self, obj: Role) -> List[Dict[str, Any]]:
        rows = obj.role_permissions.select_related("permission").order_by(
            "permission__category", "permission__name"
        )
        return RolePermissionSerializer(rows, many=True).data


class PermissionGrantSerializer(serializers.Serializer):
    permission_id = serializers.IntegerField(min_value=1)
    granted = serializers.BooleanField(default=True)


class RolePermissionsUpdateSerializer(serializers.Serializer):
    permissions = PermissionGrantSerializer(many=True, allow_empty=True)


# ===============================================================
# Tasks (READ-ONLY; completion goes through the service)
# ===============================================================

class TaskSerializer(serializers.ModelSerializer):
    project_number = serializers.CharField(source="project.project_number", read_only=True)
    project_name = serializers.CharField(source="project.name", read_only=True)
    step_name = serializers.CharField(source="workflow_step.step_name", read_only=True, default=None)
    completed_by = UserSlimSerializer(read_only=True)

    class Meta:
        model = Task
        fields = (
            "id",
            "project",
            "project_number",
            "project_name",
            "workflow_step",
            "step_name",
            "task_type",
            "title",
            "description",
            "assigned_to",
            "assigned_role",
            "status",
            "priority",
            "due_date",
            "completed_at",
            "completed_by",
            "metadata",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
