# lifecycle_core/seed.py
"""
Baseline roles, permissions and default grants.

Used by the 0002 data migration and by the `seed_access` management command.
Functions take model classes as arguments so migrations can pass historical
models.
"""

from __future__ import annotations

from lifecycle_core.workflows import (
    ADMIN,
    CATEGORY_MANAGER,
    DC_OPERATOR,
    LOGISTICS,
    PRICING_SPECIALIST,
    STRATEGIC_SUPPLY_MANAGER,
    SUPPLIER,
)

ROLES = (
    (ADMIN, "Administrator with all permissions", True),
    (CATEGORY_MANAGER, "Manages categories and projects", False),
    (LOGISTICS, "Manages logistics and freight", False),
    (SUPPLIER, "Provides supplier quotes", False),
    (PRICING_SPECIALIST, "Manages pricing", False),
    (STRATEGIC_SUPPLY_MANAGER, "Manages strategic supply chain", False),
    (DC_OPERATOR, "Runs distribution centre setup and runout", False),
)

PERMISSIONS = (
    ("CREATE_PROJECT", "Projects", "Create new projects"),
    ("UPDATE_PROJECT", "Projects", "Update projects"),
    ("DELETE_PROJECT", "Projects", "Delete projects"),
    ("VIEW_PROJECT", "Projects", "View projects"),
    ("VIEW_ALL_PROJECTS", "Projects", "View every project"),
    ("VIEW_OWN_PROJECTS", "Projects", "View projects you created"),
    ("CREATE_ITEM", "Items", "Create items"),
    ("UPDATE_ITEM", "Items", "Update items"),
    ("DELETE_ITEM", "Items", "Delete items"),
    ("VIEW_ITEM", "Items", "View items"),
    ("ADVANCE_WORKFLOW", "Workflow", "Advance workflow stages"),
    ("MOVE_BACK_WORKFLOW", "Workflow", "Move workflow back"),
    ("APPROVE_PRICING", "Pricing", "Approve pricing"),
    ("SUBMIT_PRICING", "Pricing", "Submit pricing"),
    ("VIEW_PRICING", "Pricing", "View pricing"),
    ("VIEW_AUDIT_LOGS", "Administration", "View the audit log"),
    ("MANAGE_PERMISSIONS", "Administration", "Edit role permissions"),
)

_WORKFLOW = ("ADVANCE_WORKFLOW", "MOVE_BACK_WORKFLOW")

# Admin holds everything through Role.is_admin and needs no rows.
DEFAULT_GRANTS = {
    CATEGORY_MANAGER: (
        "CREATE_PROJECT", "UPDATE_PROJECT", "VIEW_PROJECT", "VIEW_ALL_PROJECTS",
        "CREATE_ITEM", "UPDATE_ITEM", "VIEW_ITEM", "VIEW_PRICING", "APPROVE_PRICING",
    ) + _WORKFLOW,
    LOGISTICS: ("VIEW_PROJECT", "VIEW_ALL_PROJECTS", "VIEW_ITEM", "UPDATE_ITEM") + _WORKFLOW,
    SUPPLIER: ("VIEW_PROJECT", "VIEW_ITEM", "SUBMIT_PRICING", "ADVANCE_WORKFLOW"),
    PRICING_SPECIALIST: (
        "VIEW_PROJECT", "VIEW_ALL_PROJECTS", "VIEW_ITEM",
        "VIEW_PRICING", "SUBMIT_PRICING", "APPROVE_PRICING",
    ) + _WORKFLOW,
    STRATEGIC_SUPPLY_MANAGER: (
        "VIEW_PROJECT", "VIEW_ALL_PROJECTS", "VIEW_ITEM",
        "VIEW_PRICING", "APPROVE_PRICING", "VIEW_AUDIT_LOGS",
    ) + _WORKFLOW,
    DC_OPERATOR: ("VIEW_PROJECT", "VIEW_ITEM") + _WORKFLOW,
}


def seed_access(Role, Permission, RolePermission) -> dict:
    """
    Create missing roles, permissions and default grants.

    Existing rows are left untouched, so grants edited at runtime survive
    re-seeding. Returns counts of created rows.
    """
    created = {"roles": 0, "permissions": 0, "grants": 0}

    roles = {}
    for name, description, is_admin in ROLES:
        role, was_created = Role.objects.get_or_create(
            name=name,
            defaults={"description": description, "is_admin": is_admin},
        )
        roles[name] = role
        created["roles"] += int(was_created)

    perms = {}
    for name, category, description in PERMISSIONS:
        perm, was_created = Permission.objects.get_or_create(
            name=name,
            defaults={"category": category, "description": description},
        )
        perms[name] = perm
        created["permissions"] += int(was_created)

    for role_name, names in DEFAULT_GRANTS.items():
        for perm_name in names:
            _, was_created = RolePermission.objects.get_or_create(
                role=roles[role_name],
                permission=perms[perm_name],
                defaults={"granted": True},
            )
            created["grants"] += int(was_created)

    return created
