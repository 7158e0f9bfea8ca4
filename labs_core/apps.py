# labs_core/apps.py

from django.apps import AppConfig


class LabsCoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "labs_core"
    verbose_name = "Clinic laboratory"

    def ready(self):
        from . import signals  # noqa
