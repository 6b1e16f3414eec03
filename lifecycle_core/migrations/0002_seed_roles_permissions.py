# lifecycle_core/migrations/0002_seed_roles_permissions.py

from django.db import migrations

from lifecycle_core.seed import seed_access


def seed_roles_permissions(apps, schema_editor):
    """
    Baseline roles, permissions and default grants. Idempotent.
    """
    seed_access(
        apps.get_model("lifecycle_core", "Role"),
        apps.get_model("lifecycle_core", "Permission"),
        apps.get_model("lifecycle_core", "RolePermission"),
    )


class Migration(migrations.Migration):

    dependencies = [
        ("lifecycle_core", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(
            seed_roles_permissions,
            reverse_code=migrations.RunPython.noop,
        ),
    ]
