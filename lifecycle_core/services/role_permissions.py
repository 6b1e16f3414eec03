# lifecycle_core/services/role_permissions.py
"""
Role grant editing.

A role's grant set is replaced as a whole: callers submit the complete
desired set, not a diff. Every authorization check reads RolePermission
directly, so the new set applies from the next request on.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Mapping

from django.db import transaction
from rest_framework.exceptions import NotFound, ValidationError

from lifecycle_core.models import Permission, Role, RolePermission
from lifecycle_core.workflows.side_effects import (
    ENTITY_ROLE,
    UPDATE_ROLE_PERMISSIONS,
    record_audit,
)

logger = logging.getLogger(__name__)


def _normalize_grants(grants: Iterable[Mapping]) -> dict[int, bool]:
    """
    Collapse the submitted list into {permission_id: granted}.
    A permission listed twice keeps its last value.
    """
    out: dict[int, bool] = {}
    for entry in grants:
        out[int(entry["permission_id"])] = bool(entry.get("granted", True))
    return out


@transaction.atomic
def replace_role_permissions(*, role_id, grants: Iterable[Mapping], actor=None) -> List[RolePermission]:
    """
    Delete every RolePermission row of the role, then insert the submitted set.

    Unknown permission ids reject the whole request and nothing changes.
    """
    role = Role.objects.select_for_update().filter(pk=role_id).first()
    if role is None:
        raise NotFound("Role not found.")

    wanted = _normalize_grants(grants)

    known = set(Permission.objects.filter(pk__in=wanted).values_list("pk", flat=True))
    unknown = sorted(set(wanted) - known)
    if unknown:
        raise ValidationError({"permissions": [f"Unknown permission id(s): {unknown}"]})

    before = dict(
        RolePermission.objects.filter(role=role)
        .values_list("permission__name", "granted")
    )

    RolePermission.objects.filter(role=role).delete()
    RolePermission.objects.bulk_create(
        [
            RolePermission(role=role, permission_id=pid, granted=granted)
            for pid, granted in wanted.items()
        ]
    )

    rows = list(
        RolePermission.objects.filter(role=role)
        .select_related("permission")
        .order_by("permission__name")
    )
    after = {rp.permission.name: rp.granted for rp in rows}

    record_audit(
        action=UPDATE_ROLE_PERMISSIONS,
        entity_type=ENTITY_ROLE,
        entity_id=role.pk,
        user=actor,
        changes={"role": role.name, "before": before, "after": after},
    )

    logger.info(
        "Replaced permissions of role %r: %d row(s), %d granted (by user %s)",
        role.name,
        len(rows),
        sum(1 for rp in rows if rp.granted),
        getattr(actor, "pk", None),
    )
    return rows
