# lifecycle_core/urls.py

from django.urls import path, include
from rest_framework.routers import DefaultRouter

# -------------------------------------------------
# Core API ViewSets
# -------------------------------------------------
from .views import (
    HealthCheckView,
    ProjectViewSet,
    AuditLogViewSet,
    TaskViewSet,
)

# -------------------------------------------------
# Roles / permissions
# -------------------------------------------------
from .views_roles import RoleViewSet, PermissionViewSet

# -------------------------------------------------
# Workflow runtime + definitions
# -------------------------------------------------
from .views_workflow import (
    WorkflowAdvanceView,
    WorkflowMoveBackView,
    WorkflowStatusView,
    WorkflowStageDefinitionView,
)

# -------------------------------------------------
# Identity
# -------------------------------------------------
from .views_identity import WhoAmIView


app_name = "lifecycle_core"

# -------------------------------------------------
# Router
# -------------------------------------------------
router = DefaultRouter()
router.register(r"projects", ProjectViewSet, basename="project")
router.register(r"roles", RoleViewSet, basename="role")
router.register(r"permissions", PermissionViewSet, basename="permission")
router.register(r"audit-logs", AuditLogViewSet, basename="auditlog")
router.register(r"tasks", TaskViewSet, basename="task")


urlpatterns = [
    # ============================================================
    # Workflow transitions (registered before the router so the
    # project detail route cannot shadow them)
    # ============================================================
    path("projects/<int:pk>/advance/", WorkflowAdvanceView.as_view(), name="workflow-advance"),
    path("projects/<int:pk>/back/", WorkflowMoveBackView.as_view(), name="workflow-back"),
    path("projects/<int:pk>/workflow/", WorkflowStatusView.as_view(), name="workflow-status"),

    # ============================================================
    # Workflow definitions (static metadata)
    # ============================================================
    path("workflows/stages/", WorkflowStageDefinitionView.as_view(), name="workflow-stages"),
    path(
        "workflows/stages/<str:lifecycle_type>/",
        WorkflowStageDefinitionView.as_view(),
        name="workflow-stages-detail",
    ),

    # ============================================================
    # System / identity
    # ============================================================
    path("health/", HealthCheckView.as_view(), name="health_check"),
    path("whoami/", WhoAmIView.as_view(), name="whoami"),

    # ============================================================
    # Router
    # ============================================================
    path("", include(router.urls)),
]
