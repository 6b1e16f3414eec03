# lifecycle_core/views.py
from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import filters, mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .filters import AuditLogFilter, ProjectFilter, TaskFilter
from .models import AuditLog, Project, Task
from .permissions import (
    CREATE_PROJECT,
    UPDATE_PROJECT,
    VIEW_ALL_PROJECTS,
    VIEW_AUDIT_LOGS,
    VIEW_PROJECT,
    VIEW_PROJECT_PERMISSIONS,
    HasWorkflowPermission,
    get_caller,
    has_any_permission,
)
from .serializers import (
    AuditLogSerializer,
    CommentSerializer,
    LifecycleEventSerializer,
    ProjectDetailSerializer,
    ProjectSerializer,
    TaskSerializer,
)
from .services.projects import assigned_projects, create_project, update_project, visible_projects
from .services.stage_tasks import complete_task, order_for_worklist, visible_tasks
from .workflows.events import entity_events
from .workflows.side_effects import ENTITY_PROJECT


# ===============================================================
# System
# ===============================================================
class HealthCheckView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(tags=["System"])
    def get(self, request):
        return Response({"status": "ok", "service": "item-lifecycle"})


# ===============================================================
# Projects
# ===============================================================
class ProjectViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Minimal project collaborator for the workflow core.

    Creation initializes the workflow in the same transaction. Callers with
    only VIEW_OWN_PROJECTS see the projects they created. PATCH edits the
    descriptive fields; the stage and status only move through the workflow
    endpoints.
    """

    serializer_class = ProjectSerializer
    permission_classes = [IsAuthenticated, HasWorkflowPermission]
    required_permissions = {"POST": [CREATE_PROJECT], "PATCH": [UPDATE_PROJECT]}
    required_any_permissions = {"GET": list(VIEW_PROJECT_PERMISSIONS)}
    http_method_names = ["get", "post", "patch", "head", "options"]

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = ProjectFilter
    search_fields = ["project_number", "name", "description"]
    ordering_fields = ["created_at", "updated_at", "project_number", "name", "current_stage"]
    ordering = ["-created_at", "-id"]

    def get_queryset(self):
        caller = get_caller(self.request)
        if caller is None:
            return Project.objects.none()
        view_all = has_any_permission(caller, [VIEW_ALL_PROJECTS, VIEW_PROJECT])
        return visible_projects(caller, view_all)

    def get_serializer_class(self):
        if self.action == "retrieve":
            return ProjectDetailSerializer
        return super().get_serializer_class()

    @extend_schema(tags=["Projects"], responses={201: ProjectDetailSerializer})
    def create(self, request, *args, **kwargs):
        serializer = ProjectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        project = create_project(
            user=request.user,
            name=data["name"],
            description=data.get("description", ""),
            lifecycle_type=data["lifecycle_type"],
            organization_id=data.get("organization_id"),
        )
        return Response(ProjectDetailSerializer(project).data, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        serializer.instance = update_project(
            project=serializer.instance,
            user=self.request.user,
            changes=serializer.validated_data,
        )

    @extend_schema(tags=["Projects"])
    @action(detail=False, methods=["get"])
    def assigned(self, request):
        """Projects whose active stage is owned by the caller's role."""
        qs = self.filter_queryset(assigned_projects(get_caller(request)))
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(ProjectSerializer(page, many=True).data)
        return Response(ProjectSerializer(qs, many=True).data)

    @extend_schema(tags=["Projects"], responses=CommentSerializer(many=True))
    @action(detail=True, methods=["get"])
    def comments(self, request, pk=None):
        project = self.get_object()
        qs = project.comments.all()
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(CommentSerializer(page, many=True).data)
        return Response(CommentSerializer(qs, many=True).data)

    @extend_schema(tags=["Projects"], responses=LifecycleEventSerializer(many=True))
    @action(detail=True, methods=["get"])
    def events(self, request, pk=None):
        project = self.get_object()
        qs = entity_events(ENTITY_PROJECT, project.pk)
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(LifecycleEventSerializer(page, many=True).data)
        return Response(LifecycleEventSerializer(qs, many=True).data)

    @extend_schema(tags=["Projects"], responses=TaskSerializer(many=True))
    @action(detail=True, methods=["get"])
    def tasks(self, request, pk=None):
        project = self.get_object()
        qs = project.tasks.select_related("workflow_step", "completed_by")
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(TaskSerializer(page, many=True).data)
        return Response(TaskSerializer(qs, many=True).data)


# ===============================================================
# Audit log (READ-ONLY)
# ===============================================================
class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("user").all()
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, HasWorkflowPermission]
    required_permissions = (VIEW_AUDIT_LOGS,)

    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = AuditLogFilter
    ordering_fields = ["created_at", "action"]
    ordering = ["-created_at", "-id"]


# ===============================================================
# Tasks
# ===============================================================
class TaskViewSet(viewsets.ReadOnlyModelViewSet):
    """
    The caller's worklist: tasks assigned to them or to their role,
    highest priority and earliest due first.
    """

    serializer_class = TaskSerializer
    permission_classes = [IsAuthenticated]
    lookup_value_regex = r"\d+"

    filter_backends = [DjangoFilterBackend]
    filterset_class = TaskFilter

    def get_queryset(self):
        caller = get_caller(self.request)
        if caller is None:
            return Task.objects.none()
        return order_for_worklist(visible_tasks(caller))

    @extend_schema(tags=["Tasks"], request=None, responses=TaskSerializer)
    @action(detail=True, methods=["post"])
    def complete(self, request, pk=None):
        task = complete_task(task_id=pk, caller=get_caller(request), actor=request.user)
        return Response(TaskSerializer(task).data)
