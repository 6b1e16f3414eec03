# lifecycle_core/views_identity.py
from __future__ import annotations

from rest_framework.views import APIView
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .permissions import granted_permission_names, resolve_caller


class WhoAmIView(APIView):
    """
    Returns the currently authenticated user, their role and the permissions
    that role holds right now.

    This is meant for the browser client to:
      - confirm token auth is working
      - show the role
      - hide actions the caller cannot perform
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user
        caller = resolve_caller(user)

        return Response(
            {
                "id": user.id,
                "username": user.username,
                "is_superuser": bool(getattr(user, "is_superuser", False)),
                "is_admin": caller.is_admin,
                "role": caller.role_name,
                "permissions": granted_permission_names(caller),
            }
        )
