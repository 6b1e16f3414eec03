# lifecycle_core/admin.py

from django.contrib import admin, messages
from django.utils.html import format_html

from .models import (
    AuditLog,
    Comment,
    LifecycleEvent,
    Permission,
    Project,
    Role,
    RolePermission,
    Task,
    UserRole,
    WorkflowStep,
)
from .workflows.side_effects import dispatch_lifecycle_event


# =============================================================
# Audit log (READ-ONLY)
# =============================================================

@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "action", "entity_type", "entity_id", "project", "user")
    list_filter = ("action", "entity_type")
    search_fields = ("entity_id", "user__username", "project__project_number")
    ordering = ("-created_at",)

    readonly_fields = [f.name for f in AuditLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# =============================================================
# Lifecycle event outbox (READ-ONLY, re-dispatch action)
# =============================================================

@admin.register(LifecycleEvent)
class LifecycleEventAdmin(admin.ModelAdmin):
    list_display = (
        "created_at",
        "event_type",
        "entity_type",
        "entity_id",
        "status_badge",
        "processed_at",
    )
    list_filter = ("event_type", "status")
    search_fields = ("entity_id", "error_message")
    ordering = ("-created_at",)
    actions = ["redispatch_pending"]

    readonly_fields = [f.name for f in LifecycleEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        colors = {
            LifecycleEvent.Status.PENDING: "#f9a825",
            LifecycleEvent.Status.PROCESSING: "#1565c0",
            LifecycleEvent.Status.COMPLETED: "#2e7d32",
            LifecycleEvent.Status.FAILED: "#c62828",
        }
        return format_html(
            '<span style="color:{};font-weight:bold;">{}</span>',
            colors.get(obj.status, "#555"),
            obj.status,
        )

    status_badge.short_description = "Status"

    @admin.action(description="Re-dispatch selected PENDING events")
    def redispatch_pending(self, request, queryset):
        pending = queryset.filter(status=LifecycleEvent.Status.PENDING)
        sent = sum(1 for pk in pending.values_list("pk", flat=True) if dispatch_lifecycle_event(pk))
        skipped = queryset.count() - pending.count()
        self.message_user(
            request,
            f"Dispatched {sent} event(s); skipped {skipped} not pending.",
            level=messages.SUCCESS if sent else messages.WARNING,
        )


# =============================================================
# Projects (workflow fields are read-only here)
# =============================================================

class WorkflowStepInline(admin.TabularInline):
    model = WorkflowStep
    extra = 0
    can_delete = False
    fields = ("step_order", "step_name", "status", "required_role", "completed_at", "completed_by")
    readonly_fields = fields
    ordering = ("step_order",)

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = (
        "project_number",
        "name",
        "lifecycle_type",
        "status",
        "current_stage",
        "created_by",
        "created_at",
    )
    list_filter = ("lifecycle_type", "status", "current_stage")
    search_fields = ("project_number", "name")
    ordering = ("-created_at",)
    readonly_fields = (
        "project_number",
        "lifecycle_type",
        "status",
        "current_stage",
        "workflow_version",
        "completed_at",
        "created_by",
        "created_at",
        "updated_at",
    )
    inlines = [WorkflowStepInline]

    def has_add_permission(self, request):
        # Creation must go through the API so the workflow is initialized.
        return False


@admin.register(Comment)
class CommentAdmin(admin.ModelAdmin):
    list_display = ("created_at", "project", "user_name", "is_internal")
    list_filter = ("is_internal",)
    search_fields = ("content", "user_name", "project__project_number")
    ordering = ("-created_at",)


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ("title", "project", "assigned_role", "status", "priority", "due_date")
    list_filter = ("status", "priority", "assigned_role")
    search_fields = ("title", "project__project_number")
    ordering = ("-created_at",)
    # Stage tasks are opened and closed by workflow transitions.
    readonly_fields = (
        "project",
        "workflow_step",
        "task_type",
        "assigned_role",
        "status",
        "completed_at",
        "completed_by",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):
        return False


# =============================================================
# Roles / permissions
# =============================================================

class RolePermissionInline(admin.TabularInline):
    # Grants change only through the audited PUT /roles/{id}/permissions/.
    model = RolePermission
    extra = 0
    can_delete = False
    fields = ("permission", "granted")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    list_display = ("name", "is_admin", "description")
    list_filter = ("is_admin",)
    search_fields = ("name",)
    inlines = [RolePermissionInline]


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    list_display = ("name", "category", "description")
    list_filter = ("category",)
    search_fields = ("name", "category")


@admin.register(UserRole)
class UserRoleAdmin(admin.ModelAdmin):
    list_display = ("user", "role", "created_at")
    list_filter = ("role",)
    search_fields = ("user__username", "role__name")
    autocomplete_fields = ("role",)
