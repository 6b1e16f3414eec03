# lifecycle_core/apps.py

from django.apps import AppConfig


class LifecycleCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "lifecycle_core"
    verbose_name = "Item lifecycle"
