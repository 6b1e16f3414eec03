# lifecycle_core/tests/conftest.py

from __future__ import annotations

from typing import Callable, Dict, Optional

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from lifecycle_core.models import Permission, Project, Role, RolePermission, UserRole
from lifecycle_core.seed import seed_access
from lifecycle_core.services.projects import create_project
from lifecycle_core.workflows import (
    CATEGORY_MANAGER,
    DC_OPERATOR,
    LOGISTICS,
    NEW_ITEM,
    STRATEGIC_SUPPLY_MANAGER,
)


@pytest.fixture
def roles(db) -> Dict[str, Role]:
    """
    Baseline roles, permissions and default grants (idempotent).
    """
    seed_access(Role, Permission, RolePermission)
    return {r.name: r for r in Role.objects.all()}


@pytest.fixture
def make_user(db, roles) -> Callable[..., object]:
    User = get_user_model()

    def _factory(username: str, role_name: Optional[str] = None, *, superuser: bool = False):
        user = User.objects.create_user(
            username=username,
            password="pass123",
            first_name=username.capitalize(),
            is_superuser=superuser,
            is_staff=superuser,
        )
        if role_name:
            UserRole.objects.create(user=user, role=roles[role_name])
        return user

    return _factory


@pytest.fixture
def cm_user(make_user):
    return make_user("cm", CATEGORY_MANAGER)


@pytest.fixture
def logistics_user(make_user):
    return make_user("logistics", LOGISTICS)


@pytest.fixture
def ssm_user(make_user):
    return make_user("ssm", STRATEGIC_SUPPLY_MANAGER)


@pytest.fixture
def dc_user(make_user):
    return make_user("dc", DC_OPERATOR)


@pytest.fixture
def admin_user(make_user):
    return make_user("boss", "Admin")


@pytest.fixture
def superuser(make_user):
    return make_user("root", superuser=True)


@pytest.fixture
def norole_user(make_user):
    return make_user("nobody")


@pytest.fixture
def set_grant(roles) -> Callable[..., RolePermission]:
    """
    Force a single grant row to a given value.
    """

    def _set(role_name: str, permission_name: str, granted: bool = True) -> RolePermission:
        rp, _ = RolePermission.objects.update_or_create(
            role=roles[role_name],
            permission=Permission.objects.get(name=permission_name),
            defaults={"granted": granted},
        )
        return rp

    return _set


@pytest.fixture
def project_factory(db, cm_user) -> Callable[..., Project]:
    """
    Creates a project through the service, so its workflow is initialized.
    """

    def _factory(lifecycle_type: str = NEW_ITEM, *, created_by=None, name: str = "Widget") -> Project:
        return create_project(
            user=created_by or cm_user,
            name=name,
            lifecycle_type=lifecycle_type,
        )

    return _factory


@pytest.fixture
def project(project_factory) -> Project:
    return project_factory()


@pytest.fixture
def api_client() -> APIClient:
    return APIClient()


@pytest.fixture
def client_for() -> Callable[..., APIClient]:
    def _client(user) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    return _client
