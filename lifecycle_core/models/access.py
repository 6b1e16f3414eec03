# lifecycle_core/models/access.py

from django.conf import settings
from django.db import models

from lifecycle_core.models.core import TimeStampedModel


# ============================================================
# Roles
# ============================================================
class Role(TimeStampedModel):
    """
    Functional actor category (Category Manager, Logistics, Supplier, ...).

    Used both for stage ownership and as the subject of permission grants.
    `is_admin` roles bypass every grant check.
    """

    name = models.CharField(max_length=100, unique=True)
    description = models.CharField(max_length=255, blank=True)
    is_admin = models.BooleanField(default=False)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


# ============================================================
# Permissions
# ============================================================
class Permission(TimeStampedModel):
    """Named capability, e.g. ADVANCE_WORKFLOW. `category` is for grouping only."""

    name = models.CharField(max_length=100, unique=True)
    category = models.CharField(max_length=100, blank=True, db_index=True)
    description = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["category", "name"]

    def __str__(self):
        return self.name


class RolePermission(TimeStampedModel):
    """
    Role -> permission edge. A missing row behaves exactly like granted=False.
    """

    role = models.ForeignKey(
        Role,
        on_delete=models.CASCADE,
        related_name="role_permissions",
    )
    permission = models.ForeignKey(
        Permission,
        on_delete=models.CASCADE,
        related_name="role_permissions",
    )
    granted = models.BooleanField(default=True)

    class Meta:
        ordering = ["role__name", "permission__name"]
        unique_together = [("role", "permission")]

    def __str__(self):
        flag = "granted" if self.granted else "denied"
        return f"{self.role.name}: {self.permission.name} ({flag})"


# ============================================================
# User -> role membership
# ============================================================
class UserRole(TimeStampedModel):
    """Each user holds exactly one functional role."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="lifecycle_role",
    )
    role = models.ForeignKey(
        Role,
        on_delete=models.PROTECT,
        related_name="user_roles",
    )

    class Meta:
        ordering = ["user__username"]

    def __str__(self):
        return f"{self.user.username} - {self.role.name}"
