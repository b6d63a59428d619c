"""
App configuration for the backups app.
"""

from django.apps import AppConfig
from django.db.models.signals import post_migrate


def migrate_legacy_backup_settings(sender, **kwargs):
    """Turn legacy flat backup settings into a destination once the tables exist."""
    from .credentials import migrate_legacy_settings

    migrate_legacy_settings()


class BackupsConfig(AppConfig):
    """Configuration for the backups app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.backups"
    verbose_name = "Backup & Disaster Recovery"

    def ready(self):
        post_migrate.connect(
            migrate_legacy_backup_settings,
            sender=self,
            dispatch_uid="apps.backups.migrate_legacy_backup_settings",
        )
