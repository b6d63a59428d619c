"""
Management command to re-apply the stored backup configuration.

Migrates legacy flat backup settings into a destination (if none exists yet)
and recreates or removes the recurring backup job to match the stored
schedule. Safe to run on every deploy.
"""

from django.core.management.base import BaseCommand

from apps.backups.credentials import migrate_legacy_settings
from apps.backups.services import BackupScheduleService
from apps.core.setup import AppConfiguration


class Command(BaseCommand):
    help = "Migrate legacy backup settings and sync the backup schedule"

    def handle(self, *args, **options):
        config = AppConfiguration.load()

        destination = migrate_legacy_settings(config)
        if destination is not None:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Migrated legacy settings to destination {destination.name} ({destination.id})"
                )
            )

        task = BackupScheduleService.sync_schedule(config)
        if task is None:
            self.stdout.write("Scheduled backups are disabled")
        else:
            self.stdout.write(self.style.SUCCESS(f"Scheduled backup job: {task.crontab}"))
