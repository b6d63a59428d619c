"""
Service layer for backup operations.

This module provides high-level functions for:
- Triggering manual backups
- Managing the recurring backup schedule
- Deleting backups locally and remotely
- Backup history and statistics
"""

import json
import logging
from typing import Optional

from django.db import transaction
from django.db.models import Count, Prefetch, Q, Sum

from django_celery_beat.models import CrontabSchedule, PeriodicTask

from apps.core.models import AppSetting
from apps.core.setup import BACKUP_RETENTION_DAYS_KEY, BACKUP_SCHEDULE_KEY, AppConfiguration

from .models import Backup, BackupUpload
from .storage import get_storage_backend_for_destination
from .tasks import create_backup_run, perform_backup

logger = logging.getLogger(__name__)


class BackupService:
    """Service for managing backup operations."""

    @staticmethod
    def trigger_backup(triggered_by: str = Backup.TRIGGER_MANUAL, user=None) -> Backup:
        """
        Create a pending backup run for every active destination.

        Raises:
            NoActiveDestinationsError: If no destination is active
        """
        return create_backup_run(triggered_by, user=user)

    @staticmethod
    def trigger_manual_backup(user=None) -> dict:
        """
        Trigger a backup now and run it in the background.

        The rows are created synchronously; the job is queued once the
        surrounding transaction commits.

        Returns:
            Dictionary with the new backup ID

        Raises:
            NoActiveDestinationsError: If no destination is active
        """
        backup = create_backup_run(Backup.TRIGGER_MANUAL, user=user)
        user_id = user.pk if user is not None else None

        transaction.on_commit(
            lambda: perform_backup.delay(
                backup_id=str(backup.id),
                triggered_by=Backup.TRIGGER_MANUAL,
                user_id=user_id,
            )
        )

        logger.info(
            f"Manual backup {backup.id} queued by {user.username if user else 'system'}"
        )
        return {"id": str(backup.id)}

    @staticmethod
    def delete_backup(backup_id) -> None:
        """
        Delete a backup and its archive at every destination it reached.

        Remote deletes are best effort: failures are logged and the backup
        row is deleted regardless.

        Raises:
            Backup.DoesNotExist: If there is no such backup
        """
        backup = Backup.objects.prefetch_related("uploads__destination").get(pk=backup_id)

        if backup.file_name:
            config = AppConfiguration.load()
            for upload in backup.uploads.all():
                if upload.status != BackupUpload.COMPLETED:
                    continue
                destination = upload.destination
                try:
                    storage = get_storage_backend_for_destination(destination, config=config)
                    storage.delete(backup.file_name)
                    logger.info(f"Deleted {backup.file_name} from {destination.name}")
                except Exception as e:
                    logger.warning(
                        f"Could not delete {backup.file_name} from {destination.name}: {e}"
                    )

        backup.delete()
        logger.info(f"Deleted backup {backup_id}")

    @staticmethod
    def get_history(limit: int = 50):
        """Most recent backups first, with their uploads and destinations loaded."""
        uploads = BackupUpload.objects.select_related("destination")
        return list(
            Backup.objects.select_related("user").prefetch_related(
                Prefetch("uploads", queryset=uploads)
            )[:limit]
        )

    @staticmethod
    def get_backup_statistics() -> dict:
        """
        Get backup statistics.

        Returns:
            Dictionary with counts per status, stored bytes and the last
            successful backup
        """
        totals = Backup.objects.aggregate(
            total=Count("id"),
            completed=Count("id", filter=Q(status=Backup.COMPLETED)),
            partial=Count("id", filter=Q(status=Backup.PARTIAL)),
            failed=Count("id", filter=Q(status=Backup.FAILED)),
            in_progress=Count("id", filter=Q(status__in=[Backup.PENDING, Backup.RUNNING])),
            total_size=Sum("file_size", filter=Q(status__in=[Backup.COMPLETED, Backup.PARTIAL])),
        )

        last_backup = (
            Backup.objects.filter(status=Backup.COMPLETED).order_by("-completed_at").first()
        )

        return {
            "total_backups": totals["total"],
            "completed_backups": totals["completed"],
            "partial_backups": totals["partial"],
            "failed_backups": totals["failed"],
            "in_progress_backups": totals["in_progress"],
            "total_size_bytes": totals["total_size"] or 0,
            "last_successful_backup": (
                {
                    "id": str(last_backup.id),
                    "file_name": last_backup.file_name,
                    "completed_at": last_backup.completed_at,
                }
                if last_backup
                else None
            ),
        }

    @staticmethod
    def update_settings(schedule: Optional[str] = None, retention_days=None, user=None) -> dict:
        """
        Update the backup schedule and retention setting.

        Retention is stored for display only; old backups are not pruned.
        """
        with transaction.atomic():
            if retention_days is not None:
                AppSetting.set_value(BACKUP_RETENTION_DAYS_KEY, int(retention_days), user=user)
            if schedule is not None:
                BackupScheduleService.set_schedule(schedule, user=user)

        config = AppConfiguration.load()
        return {"schedule": config.schedule, "retention_days": config.retention_days}


class BackupScheduleService:
    """
    Manage the single recurring backup job.

    The job is a django-celery-beat PeriodicTask named "scheduled-backup"
    that runs perform_backup at 02:00 every day, or 02:00 every Sunday.
    """

    TASK_NAME = "scheduled-backup"
    TASK = "apps.backups.tasks.perform_backup"

    DISABLED = ("none", "manual")
    CRONTABS = {
        "daily": {"minute": "0", "hour": "2", "day_of_week": "*"},
        "weekly": {"minute": "0", "hour": "2", "day_of_week": "0"},
    }

    @classmethod
    def apply_schedule(cls, frequency: str) -> Optional[PeriodicTask]:
        """
        Create, update or remove the recurring job for ``frequency``.

        Returns:
            The PeriodicTask, or None when the schedule is disabled

        Raises:
            ValueError: If the frequency is not daily, weekly, none or manual
        """
        if frequency in cls.DISABLED:
            deleted, _ = PeriodicTask.objects.filter(name=cls.TASK_NAME).delete()
            if deleted:
                logger.info("Removed scheduled backup job")
            return None

        fields = cls.CRONTABS.get(frequency)
        if fields is None:
            raise ValueError(f"Unsupported backup schedule: {frequency}")

        crontab, _ = CrontabSchedule.objects.get_or_create(
            day_of_month="*", month_of_year="*", **fields
        )
        task, created = PeriodicTask.objects.update_or_create(
            name=cls.TASK_NAME,
            defaults={
                "task": cls.TASK,
                "crontab": crontab,
                "interval": None,
                "kwargs": json.dumps(
                    {"triggered_by": Backup.TRIGGER_SCHEDULED, "user_id": None}
                ),
                "queue": "backups",
                "enabled": True,
            },
        )

        logger.info(f"{'Created' if created else 'Updated'} {frequency} scheduled backup job")
        return task

    @classmethod
    def set_schedule(cls, frequency: str, user=None) -> Optional[PeriodicTask]:
        """Apply ``frequency`` and persist it as the backup_schedule setting."""
        with transaction.atomic():
            task = cls.apply_schedule(frequency)
            AppSetting.set_value(BACKUP_SCHEDULE_KEY, frequency, user=user)
        return task

    @classmethod
    def sync_schedule(cls, config: Optional[AppConfiguration] = None) -> Optional[PeriodicTask]:
        """Re-apply the stored schedule. Unknown stored values disable the job."""
        config = config or AppConfiguration.load()
        frequency = config.schedule
        if frequency not in cls.CRONTABS and frequency not in cls.DISABLED:
            logger.warning(f"Stored backup schedule '{frequency}' is not recognised, disabling")
            frequency = "none"
        return cls.apply_schedule(frequency)

    @classmethod
    def get_scheduled_task(cls) -> Optional[PeriodicTask]:
        return PeriodicTask.objects.filter(name=cls.TASK_NAME).select_related("crontab").first()
