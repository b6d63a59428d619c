"""
Management command to trigger a backup manually.

This command is used by:
- Deployment scripts before migrating production
- Manual backup operations from a shell
"""

from django.core.management.base import BaseCommand, CommandError

from apps.backups.exceptions import BackupError
from apps.backups.models import Backup
from apps.backups.tasks import create_backup_run, execute_backup, perform_backup


class Command(BaseCommand):
    help = "Back up the database and uploads to every active destination"

    def add_arguments(self, parser):
        parser.add_argument(
            "--async",
            action="store_true",
            help="Queue the backup on the Celery backups queue instead of running it here",
        )

    def handle(self, *args, **options):
        run_async = options.get("async", False)

        self.stdout.write("Triggering backup...")

        try:
            backup = create_backup_run(Backup.TRIGGER_MANUAL)
        except BackupError as e:
            raise CommandError(f"Backup failed: {e}")

        if run_async:
            task = perform_backup.delay(backup_id=str(backup.id), triggered_by=Backup.TRIGGER_MANUAL)
            self.stdout.write(self.style.SUCCESS(f"Backup {backup.id} queued: {task.id}"))
            return

        backup = execute_backup(backup.id)
        for upload in backup.uploads.select_related("destination"):
            line = f"  {upload.destination.name}: {upload.status}"
            if upload.error_message:
                line += f" ({upload.error_message})"
            self.stdout.write(line)

        if backup.status == Backup.FAILED:
            raise CommandError(f"Backup {backup.id} failed: {backup.error_message}")

        style = self.style.SUCCESS if backup.status == Backup.COMPLETED else self.style.WARNING
        self.stdout.write(style(f"Backup {backup.id} {backup.status}: {backup.file_name}"))
