# lifecycle_core/views_roles.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .models import Permission, Role
from .permissions import MANAGE_PERMISSIONS, HasWorkflowPermission
from .serializers import (
    PermissionSerializer,
    RoleDetailSerializer,
    RoleSerializer,
    RolePermissionSerializer,
    RolePermissionsUpdateSerializer,
)
from .services.role_permissions import replace_role_permissions


class RoleViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Roles and their permission grants.

    Reading is open to authenticated users. Replacing a role's grant set
    requires MANAGE_PERMISSIONS.
    """

    queryset = Role.objects.all().order_by("name")
    permission_classes = [IsAuthenticated, HasWorkflowPermission]
    required_permissions = {"GET": [], "PUT": [MANAGE_PERMISSIONS]}
    pagination_class = None

    def get_serializer_class(self):
        if self.action == "list":
            return RoleSerializer
        return RoleDetailSerializer

    @extend_schema(
        tags=["Roles"],
        request=RolePermissionsUpdateSerializer,
        responses={
            200: RolePermissionSerializer(many=True),
            400: OpenApiResponse(description="Malformed body or unknown permission id"),
            403: OpenApiResponse(description="Insufficient permissions"),
            404: OpenApiResponse(description="Role not found"),
        },
    )
    @action(detail=True, methods=["put"], url_path="permissions")
    def update_permissions(self, request, pk=None):
        """
        Replace the role's full grant set. Send the complete desired set,
        not a diff: permissions left out end up with no grant row.
        """
        serializer = RolePermissionsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        rows = replace_role_permissions(
            role_id=pk,
            grants=serializer.validated_data["permissions"],
            actor=request.user,
        )
        return Response(RolePermissionSerializer(rows, many=True).data)


class PermissionViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Permission.objects.all().order_by("category", "name")
    serializer_class = PermissionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None
