from django.core.management.base import BaseCommand

from lifecycle_core.models import Permission, Role, RolePermission
from lifecycle_core.seed import seed_access


class Command(BaseCommand):
    help = "Create missing baseline roles, permissions and default grants"

    def handle(self, *args, **options):
        created = seed_access(Role, Permission, RolePermission)
        self.stdout.write(
            "Created {roles} role(s), {permissions} permission(s), {grants} grant(s)".format(**created)
        )
