# lifecycle_core/permissions.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from django.conf import settings
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import BasePermission

from .models import Permission, RolePermission, UserRole

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Permission names
# ------------------------------------------------------------------
ADVANCE_WORKFLOW = "ADVANCE_WORKFLOW"
MOVE_BACK_WORKFLOW = "MOVE_BACK_WORKFLOW"
VIEW_PROJECT = "VIEW_PROJECT"
VIEW_ALL_PROJECTS = "VIEW_ALL_PROJECTS"
VIEW_OWN_PROJECTS = "VIEW_OWN_PROJECTS"
CREATE_PROJECT = "CREATE_PROJECT"
UPDATE_PROJECT = "UPDATE_PROJECT"
VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
MANAGE_PERMISSIONS = "MANAGE_PERMISSIONS"

VIEW_PROJECT_PERMISSIONS = (VIEW_PROJECT, VIEW_ALL_PROJECTS, VIEW_OWN_PROJECTS)


# ------------------------------------------------------------------
# Caller identity
# ------------------------------------------------------------------
@dataclass(frozen=True)
class Caller:
    user_id: Optional[int]
    role_id: Optional[int]
    role_name: Optional[str]
    is_admin: bool = False


def resolve_caller(user) -> Optional[Caller]:
    """
    Resolve the caller identity from the database on every call.

    Superusers and members of an `is_admin` role are admin callers.
    A user without a role is a caller with no grants.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return None

    membership = (
        UserRole.objects.select_related("role")
        .filter(user_id=user.pk)
        .first()
    )
    role = membership.role if membership else None

    return Caller(
        user_id=user.pk,
        role_id=role.pk if role else None,
        role_name=role.name if role else None,
        is_admin=bool(getattr(user, "is_superuser", False) or (role and role.is_admin)),
    )


def get_caller(request) -> Optional[Caller]:
    caller = getattr(request, "caller", None)
    if caller is None:
        caller = resolve_caller(getattr(request, "user", None))
    return caller


# ------------------------------------------------------------------
# Grant checks
# ------------------------------------------------------------------
def has_permission(caller: Optional[Caller], permission_name: str) -> bool:
    """
    Admin callers hold every permission. Otherwise the caller's role needs
    a RolePermission row for `permission_name` with granted=True. Unknown
    permission names are simply not granted.
    """
    if caller is None:
        return False
    if caller.is_admin:
        return True
    if caller.role_id is None:
        return False
    return RolePermission.objects.filter(
        role_id=caller.role_id,
        permission__name=permission_name,
        granted=True,
    ).exists()


def has_any_permission(caller: Optional[Caller], permission_names: Iterable[str]) -> bool:
    names = list(permission_names)
    if caller is None or not names:
        return False
    if caller.is_admin:
        return True
    if caller.role_id is None:
        return False
    return RolePermission.objects.filter(
        role_id=caller.role_id,
        permission__name__in=names,
        granted=True,
    ).exists()


def has_role(caller: Optional[Caller], role_names: Iterable[str]) -> bool:
    if caller is None:
        return False
    if caller.is_admin:
        return True
    return caller.role_name is not None and caller.role_name in set(role_names)


def granted_permission_names(caller: Optional[Caller]) -> List[str]:
    if caller is None:
        return []
    if caller.is_admin:
        return sorted(Permission.objects.values_list("name", flat=True))
    if caller.role_id is None:
        return []
    return sorted(
        RolePermission.objects.filter(role_id=caller.role_id, granted=True)
        .values_list("permission__name", flat=True)
    )


# ------------------------------------------------------------------
# Denials
# ------------------------------------------------------------------
class InsufficientPermission(PermissionDenied):
    default_detail = "Insufficient permissions"
    default_code = "insufficient_permissions"

    def __init__(self, required: Sequence[str] | str, detail: Optional[str] = None):
        if isinstance(required, str):
            required = [required]
        self.required = list(required)
        super().__init__(
            detail={
                "detail": detail or self.default_detail,
                "required": self.required,
            }
        )


def require_permission(caller: Optional[Caller], permission_name: str) -> None:
    if not has_permission(caller, permission_name):
        logger.warning(
            "Permission %s denied for user %s (role %s)",
            permission_name,
            getattr(caller, "user_id", None),
            getattr(caller, "role_name", None),
        )
        raise InsufficientPermission(permission_name)


def require_any_permission(caller: Optional[Caller], permission_names: Sequence[str]) -> None:
    if not has_any_permission(caller, permission_names):
        logger.warning(
            "Permissions %s denied for user %s (role %s)",
            ",".join(permission_names),
            getattr(caller, "user_id", None),
            getattr(caller, "role_name", None),
        )
        raise InsufficientPermission(list(permission_names))


# ------------------------------------------------------------------
# Stage ownership
# ------------------------------------------------------------------
def stage_ownership_enforced() -> bool:
    return bool(getattr(settings, "WORKFLOW_ENFORCE_STAGE_OWNERSHIP", True))


def assert_stage_owner(caller: Optional[Caller], step, action: str = "advance") -> None:
    """
    Require the caller's role to own `step`.

    Admin callers and steps without a required role always pass.
    """
    if caller is not None and caller.is_admin:
        return

    required_role = getattr(step, "required_role", None)
    if not required_role:
        return

    current_role = getattr(caller, "role_name", None)
    if current_role == required_role:
        return

    logger.warning(
        "Stage ownership denied: user %s (role %s) tried to %s from %r owned by %s",
        getattr(caller, "user_id", None),
        current_role,
        action,
        step.step_name,
        required_role,
    )
    raise PermissionDenied(
        detail={
            "detail": (
                f'Only users with role "{required_role}" can {action} '
                f'from this stage. Current user role: "{current_role}"'
            ),
            "required_role": required_role,
            "current_role": current_role,
        }
    )


# ------------------------------------------------------------------
# Permission class
# ------------------------------------------------------------------
# HEAD and OPTIONS read what GET reads.
_READ_ALIASES = {"HEAD": "GET", "OPTIONS": "GET"}


def _method_key(method: str) -> str:
    return _READ_ALIASES.get(method, method)


def _for_method(value, method: str) -> Sequence[str]:
    if not value:
        return ()
    if isinstance(value, dict):
        return tuple(value.get(_method_key(method), ()))
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _method_declared(view, method: str) -> bool:
    keyed = [
        value
        for value in (
            getattr(view, "required_permissions", None),
            getattr(view, "required_any_permissions", None),
        )
        if isinstance(value, dict)
    ]
    lowered = method.lower()
    if not keyed or lowered not in view.http_method_names or not hasattr(view, lowered):
        # Unrouted methods fall through to the 405 response.
        return True
    key = _method_key(method)
    return any(key in value for value in keyed)


class HasWorkflowPermission(BasePermission):
    """
    Single authorization gate for API views.

    Views declare either or both of:
      required_permissions      every listed permission must be granted
      required_any_permissions  at least one listed permission must be granted

    Each may be a sequence or a dict keyed by HTTP method. HEAD and OPTIONS
    use the GET entry. When a dict is declared, a method the view handles but
    no dict lists is refused. The resolved Caller is stored on
    request.caller for the view to reuse.
    """

    message = "This method is not permitted on this resource."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        caller = resolve_caller(user)
        request.caller = caller

        if not _method_declared(view, request.method):
            logger.warning(
                "Refused undeclared %s on %s for user %s",
                request.method,
                view.__class__.__name__,
                caller.user_id,
            )
            return False

        for name in _for_method(getattr(view, "required_permissions", None), request.method):
            require_permission(caller, name)

        any_of = _for_method(getattr(view, "required_any_permissions", None), request.method)
        if any_of:
            require_any_permission(caller, any_of)

        return True
