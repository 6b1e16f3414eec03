# lifecycle_core/tests/test_authorization_gate.py

import pytest
from rest_framework.exceptions import PermissionDenied
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from lifecycle_core.models import Permission, RolePermission
from lifecycle_core.permissions import (
    HasWorkflowPermission,
    InsufficientPermission,
    assert_stage_owner,
    granted_permission_names,
    has_any_permission,
    has_permission,
    has_role,
    require_permission,
    resolve_caller,
)
from lifecycle_core.services.role_permissions import replace_role_permissions
from lifecycle_core.workflows import CATEGORY_MANAGER, LOGISTICS


@pytest.mark.django_db
def test_admin_role_holds_every_permission(admin_user):
    caller = resolve_caller(admin_user)

    assert caller.is_admin is True
    assert has_permission(caller, "ADVANCE_WORKFLOW") is True
    assert has_permission(caller, "NOT_A_REAL_PERMISSION") is True
    assert has_role(caller, ["Supplier"]) is True


@pytest.mark.django_db
def test_superuser_without_role_is_admin(superuser):
    caller = resolve_caller(superuser)

    assert caller.role_name is None
    assert caller.is_admin is True
    assert has_permission(caller, "MANAGE_PERMISSIONS") is True


@pytest.mark.django_db
def test_user_without_role_holds_nothing(norole_user):
    caller = resolve_caller(norole_user)

    assert has_permission(caller, "VIEW_PROJECT") is False
    assert has_any_permission(caller, ["VIEW_PROJECT", "VIEW_OWN_PROJECTS"]) is False
    assert granted_permission_names(caller) == []


def test_anonymous_caller_is_none():
    assert resolve_caller(None) is None
    assert has_permission(None, "VIEW_PROJECT") is False


@pytest.mark.django_db
def test_unknown_permission_name_is_not_granted(cm_user):
    caller = resolve_caller(cm_user)
    assert has_permission(caller, "NOT_A_REAL_PERMISSION") is False


@pytest.mark.django_db
def test_explicit_false_row_equals_missing_row(cm_user, set_grant, roles):
    caller = resolve_caller(cm_user)

    set_grant(CATEGORY_MANAGER, "ADVANCE_WORKFLOW", granted=False)
    assert has_permission(caller, "ADVANCE_WORKFLOW") is False

    RolePermission.objects.filter(
        role=roles[CATEGORY_MANAGER],
        permission__name="ADVANCE_WORKFLOW",
    ).delete()
    assert has_permission(caller, "ADVANCE_WORKFLOW") is False


@pytest.mark.django_db
def test_grant_toggle_applies_on_next_check(cm_user, set_grant, roles):
    caller = resolve_caller(cm_user)
    set_grant(CATEGORY_MANAGER, "VIEW_AUDIT_LOGS", granted=False)
    assert has_permission(caller, "VIEW_AUDIT_LOGS") is False

    current = [
        {"permission_id": rp.permission_id, "granted": rp.granted}
        for rp in RolePermission.objects.filter(role=roles[CATEGORY_MANAGER])
    ]
    for entry in current:
        if entry["permission_id"] == Permission.objects.get(name="VIEW_AUDIT_LOGS").pk:
            entry["granted"] = True
    replace_role_permissions(role_id=roles[CATEGORY_MANAGER].pk, grants=current)

    assert has_permission(caller, "VIEW_AUDIT_LOGS") is True


@pytest.mark.django_db
def test_has_any_permission_is_an_or(logistics_user, set_grant):
    caller = resolve_caller(logistics_user)
    set_grant(LOGISTICS, "VIEW_PROJECT", granted=False)
    set_grant(LOGISTICS, "VIEW_ALL_PROJECTS", granted=False)
    set_grant(LOGISTICS, "VIEW_OWN_PROJECTS", granted=True)

    assert has_any_permission(caller, ["VIEW_PROJECT", "VIEW_OWN_PROJECTS"]) is True
    assert has_any_permission(caller, ["VIEW_PROJECT", "VIEW_ALL_PROJECTS"]) is False
    assert has_any_permission(caller, []) is False


@pytest.mark.django_db
def test_has_role_is_exact_name_membership(logistics_user):
    caller = resolve_caller(logistics_user)

    assert has_role(caller, [LOGISTICS, "Supplier"]) is True
    assert has_role(caller, ["logistics"]) is False


@pytest.mark.django_db
def test_require_permission_names_the_missing_permission(logistics_user):
    caller = resolve_caller(logistics_user)

    with pytest.raises(InsufficientPermission) as exc:
        require_permission(caller, "CREATE_PROJECT")

    assert exc.value.status_code == 403
    assert exc.value.detail["detail"] == "Insufficient permissions"
    assert exc.value.detail["required"] == ["CREATE_PROJECT"]


@pytest.mark.django_db
def test_granted_permission_names_for_role(dc_user):
    names = granted_permission_names(resolve_caller(dc_user))
    assert names == sorted(["VIEW_PROJECT", "VIEW_ITEM", "ADVANCE_WORKFLOW", "MOVE_BACK_WORKFLOW"])


# ---------------------------------------------------------
# Stage ownership
# ---------------------------------------------------------
@pytest.mark.django_db
def test_stage_owner_must_match_required_role(project, logistics_user, cm_user, admin_user):
    draft = project.workflow_steps.get(step_order=1)

    with pytest.raises(PermissionDenied) as exc:
        assert_stage_owner(resolve_caller(logistics_user), draft)

    assert exc.value.detail["required_role"] == CATEGORY_MANAGER
    assert exc.value.detail["current_role"] == LOGISTICS

    assert_stage_owner(resolve_caller(cm_user), draft)
    assert_stage_owner(resolve_caller(admin_user), draft)


@pytest.mark.django_db
def test_step_without_required_role_has_no_owner(project, logistics_user):
    completed = project.workflow_steps.get(step_name="Completed")
    assert_stage_owner(resolve_caller(logistics_user), completed)


# ---------------------------------------------------------
# Method-keyed requirements
# ---------------------------------------------------------
class _KeyedView(APIView):
    required_permissions = {"GET": ["VIEW_PROJECT"]}

    def get(self, request):
        pass

    def delete(self, request):
        pass


def _gate(user, method):
    request = getattr(APIRequestFactory(), method)("/keyed/")
    request.user = user
    return HasWorkflowPermission().has_permission(request, _KeyedView())


@pytest.mark.django_db
def test_head_uses_the_get_requirements(cm_user, norole_user):
    assert _gate(cm_user, "head") is True

    with pytest.raises(InsufficientPermission) as exc:
        _gate(norole_user, "head")

    assert exc.value.detail["required"] == ["VIEW_PROJECT"]


@pytest.mark.django_db
def test_handled_method_missing_from_the_dict_is_refused(cm_user, admin_user):
    assert _gate(cm_user, "delete") is False
    assert _gate(admin_user, "delete") is False


@pytest.mark.django_db
def test_unhandled_method_falls_through_to_405(cm_user):
    # _KeyedView has no put(); the view answers 405 after the gate.
    assert _gate(cm_user, "put") is True
