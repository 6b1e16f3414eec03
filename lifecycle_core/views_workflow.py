# lifecycle_core/views_workflow.py
from __future__ import annotations

from typing import Callable, Optional

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from lifecycle_core.models import Project
from lifecycle_core.permissions import (
    ADVANCE_WORKFLOW,
    MOVE_BACK_WORKFLOW,
    VIEW_ALL_PROJECTS,
    VIEW_PROJECT,
    VIEW_PROJECT_PERMISSIONS,
    Caller,
    HasWorkflowPermission,
    assert_stage_owner,
    get_caller,
    has_any_permission,
    stage_ownership_enforced,
)
from lifecycle_core.serializers import (
    TransitionRequestSerializer,
    WorkflowDefinitionSerializer,
    WorkflowStatusSerializer,
)
from lifecycle_core.workflows import engine, workflow_definition


def _stage_guard(caller: Optional[Caller], action: str) -> Optional[Callable]:
    """
    Stage-ownership check run by the engine against the locked active step.
    """
    if not stage_ownership_enforced():
        return None
    return lambda step: assert_stage_owner(caller, step, action)


_TRANSITION_RESPONSES = {
    200: WorkflowStatusSerializer,
    400: OpenApiResponse(description="Invalid transition"),
    403: OpenApiResponse(description="Insufficient permissions or not the stage owner"),
    404: OpenApiResponse(description="Project not found"),
    409: OpenApiResponse(description="Concurrent or stale transition, retry"),
}


# =============================================================
# Transitions (AUTHORITATIVE)
# =============================================================

class _WorkflowTransitionView(APIView):
    """
    Body: {"comment": "...", "expected_version": 3}  (both optional)

    These endpoints are the ONLY API-level entry points that mutate
    workflow state.
    """

    permission_classes = [IsAuthenticated, HasWorkflowPermission]
    transition_action = ""

    def run_transition(self, pk, **kwargs):
        raise NotImplementedError

    def post(self, request, pk: int):
        serializer = TransitionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        snapshot = self.run_transition(
            pk,
            actor=request.user,
            comment=data.get("comment"),
            expected_version=data.get("expected_version"),
            stage_guard=_stage_guard(get_caller(request), self.transition_action),
        )
        return Response(WorkflowStatusSerializer(snapshot).data)


class WorkflowAdvanceView(_WorkflowTransitionView):
    """
    POST /api/projects/<pk>/advance/
    """

    required_permissions = (ADVANCE_WORKFLOW,)
    transition_action = "advance"

    def run_transition(self, pk, **kwargs):
        return engine.advance(pk, **kwargs)

    @extend_schema(
        tags=["Workflow"],
        request=TransitionRequestSerializer,
        responses=_TRANSITION_RESPONSES,
    )
    def post(self, request, pk: int):
        return super().post(request, pk)


class WorkflowMoveBackView(_WorkflowTransitionView):
    """
    POST /api/projects/<pk>/back/
    """

    required_permissions = (MOVE_BACK_WORKFLOW,)
    transition_action = "move back"

    def run_transition(self, pk, **kwargs):
        return engine.move_back(pk, **kwargs)

    @extend_schema(
        tags=["Workflow"],
        request=TransitionRequestSerializer,
        responses=_TRANSITION_RESPONSES,
    )
    def post(self, request, pk: int):
        return super().post(request, pk)


# =============================================================
# Status (read-only)
# =============================================================

class WorkflowStatusView(APIView):
    """
    GET /api/projects/<pk>/workflow/

    Status snapshot plus topology checks. can_advance / can_move_back do not
    consider the caller.
    """

    permission_classes = [IsAuthenticated, HasWorkflowPermission]
    required_any_permissions = VIEW_PROJECT_PERMISSIONS

    @extend_schema(tags=["Workflow"], responses={200: WorkflowStatusSerializer})
    def get(self, request, pk: int):
        caller = get_caller(request)

        # VIEW_OWN_PROJECTS alone only reaches the caller's own projects.
        if not has_any_permission(caller, [VIEW_PROJECT, VIEW_ALL_PROJECTS]):
            if not Project.objects.filter(pk=pk, created_by_id=caller.user_id).exists():
                raise NotFound("Project not found.")

        snapshot = engine.get_workflow_status(pk)
        advance_check = engine.can_advance(pk)
        back_check = engine.can_move_back(pk)

        payload = dict(WorkflowStatusSerializer(snapshot).data)
        payload.update(
            {
                "workflow_version": snapshot.project.workflow_version,
                "can_advance": advance_check.allowed,
                "can_move_back": back_check.allowed,
                "reasons": {
                    "advance": advance_check.reason,
                    "move_back": back_check.reason,
                },
            }
        )
        return Response(payload)


# =============================================================
# Stage definitions (static)
# =============================================================

class WorkflowStageDefinitionView(APIView):
    """
    GET /api/workflows/stages/
    GET /api/workflows/stages/<lifecycle_type>/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(tags=["Workflow"], responses=WorkflowDefinitionSerializer)
    def get(self, request, lifecycle_type: Optional[str] = None):
        try:
            definition = workflow_definition(lifecycle_type)
        except ValueError as exc:
            raise NotFound(str(exc))

        if lifecycle_type is None:
            # Keyed by lifecycle type.
            return Response(
                {key: WorkflowDefinitionSerializer(value).data for key, value in definition.items()}
            )
        return Response(WorkflowDefinitionSerializer(definition).data)
