"""
Celery tasks for the backup system.

A backup run goes through these steps:
1. Trigger: create the Backup row and one BackupUpload per active destination
2. Build the archive once (database dump + uploads + manifest)
3. Fan the archive out to every destination, each upload succeeding or
   failing on its own
4. Derive the Backup status from the upload set
"""

import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import connection, transaction

from celery import shared_task

from apps.core.setup import AppConfiguration

from .archive import create_backup_archive
from .exceptions import NoActiveDestinationsError
from .models import Backup, BackupDestination, BackupUpload
from .storage import BACKUP_PREFIX, get_storage_backend_for_destination

User = get_user_model()

logger = logging.getLogger(__name__)


def aggregate_backup_status(upload_statuses: Iterable[str]) -> str:
    """
    Derive a backup's terminal status from its upload statuses.

    All completed gives completed, all failed gives failed, a mix gives
    partial. An empty upload set counts as failed.
    """
    statuses = list(upload_statuses)
    if not statuses:
        return Backup.FAILED
    if all(status == BackupUpload.COMPLETED for status in statuses):
        return Backup.COMPLETED
    if all(status == BackupUpload.FAILED for status in statuses):
        return Backup.FAILED
    return Backup.PARTIAL


def create_backup_run(triggered_by: str, user=None) -> Backup:
    """
    Create a pending Backup with one pending BackupUpload per active destination.

    Raises:
        NoActiveDestinationsError: If no destination is active. No row is created.
    """
    with transaction.atomic():
        destinations = list(BackupDestination.objects.filter(is_active=True))
        if not destinations:
            raise NoActiveDestinationsError()

        provider = destinations[0].provider if len(destinations) == 1 else Backup.PROVIDER_MULTI
        backup = Backup.objects.create(provider=provider, triggered_by=triggered_by, user=user)
        BackupUpload.objects.bulk_create(
            [BackupUpload(backup=backup, destination=destination) for destination in destinations]
        )

    logger.info(
        f"Created {triggered_by} backup {backup.id} for {len(destinations)} destination(s)"
    )
    return backup


def upload_to_destination(
    upload: BackupUpload, archive_path: str, remote_key: str, config: AppConfiguration
) -> str:
    """
    Upload the archive to one destination and record the outcome on ``upload``.

    Any error is caught and stored on the upload so that the other
    destinations are unaffected.

    Returns:
        The upload's final status
    """
    destination = upload.destination
    upload.start()
    upload.save(update_fields=["status", "started_at"])

    try:
        storage = get_storage_backend_for_destination(destination, config=config)
        storage.upload(archive_path, remote_key)
    except Exception as e:
        logger.error(f"Upload to {destination.name} ({destination.provider}) failed: {e}")
        upload.fail(str(e) or e.__class__.__name__)
    else:
        logger.info(f"Uploaded {remote_key} to {destination.name}")
        upload.complete()

    upload.save(update_fields=["status", "error_message", "completed_at"])
    return upload.status


def _upload_in_thread(upload, archive_path, remote_key, config):
    try:
        return upload_to_destination(upload, archive_path, remote_key, config)
    finally:
        # Worker threads get their own database connection
        connection.close()


def upload_to_all_destinations(
    backup: Backup, archive_path: str, config: Optional[AppConfiguration] = None
) -> List[str]:
    """
    Upload the archive to every pending destination of ``backup``.

    Uploads run on a thread pool of BACKUP_UPLOAD_CONCURRENCY workers; with a
    single worker they run one after another in the calling thread.

    Returns:
        List of final upload statuses
    """
    config = config or AppConfiguration.load()
    uploads = list(
        backup.uploads.select_related("destination").filter(status=BackupUpload.PENDING)
    )
    workers = max(1, int(getattr(settings, "BACKUP_UPLOAD_CONCURRENCY", 4)))

    if workers == 1 or len(uploads) <= 1:
        return [
            upload_to_destination(upload, archive_path, backup.file_name, config)
            for upload in uploads
        ]

    with ThreadPoolExecutor(
        max_workers=min(workers, len(uploads)), thread_name_prefix="backup-upload"
    ) as executor:
        futures = [
            executor.submit(_upload_in_thread, upload, archive_path, backup.file_name, config)
            for upload in uploads
        ]
        return [future.result() for future in futures]


def fail_backup(backup: Backup, message: str) -> None:
    """
    Stop a run after an error.

    Every upload that has not finished is failed with ``message``. The
    backup's status is then derived from the whole upload set, so uploads
    that already completed still count.
    """
    unfinished = backup.uploads.filter(status__in=[BackupUpload.PENDING, BackupUpload.UPLOADING])
    for upload in unfinished:
        upload.fail(message)
        upload.save(update_fields=["status", "error_message", "completed_at"])

    if backup.is_finished():
        return

    outcome = aggregate_backup_status(backup.uploads.values_list("status", flat=True))
    if outcome == Backup.FAILED or backup.status != Backup.RUNNING:
        backup.fail(message)
    else:
        backup.error_message = message
        backup.finish(outcome)
    backup.save()


def execute_backup(backup_id) -> Backup:
    """
    Run a triggered backup: build the archive once and upload it everywhere.

    Args:
        backup_id: ID of a pending Backup

    Returns:
        The Backup in its terminal status
    """
    backup = Backup.objects.get(pk=backup_id)
    if backup.status != Backup.PENDING:
        logger.warning(f"Backup {backup.id} is {backup.status}, not executing it again")
        return backup

    logger.info("=" * 80)
    logger.info(f"Starting backup {backup.id} ({backup.triggered_by})")
    logger.info("=" * 80)

    backup.start()
    backup.save(update_fields=["status", "started_at", "updated_at"])

    try:
        config = AppConfiguration.load()

        with tempfile.TemporaryDirectory(
            prefix="backup-", dir=settings.BACKUP_TEMP_DIR, ignore_cleanup_errors=True
        ) as temp_dir:
            try:
                archive_path, manifest = create_backup_archive(temp_dir)
            except Exception as e:
                logger.error(f"Backup {backup.id} failed to build archive: {e}", exc_info=True)
                fail_backup(backup, str(e))
                return backup

            backup.file_name = f"{BACKUP_PREFIX}{Path(archive_path).name}"
            backup.file_size = Path(archive_path).stat().st_size
            backup.manifest = manifest
            backup.save(update_fields=["file_name", "file_size", "manifest", "updated_at"])

            statuses = upload_to_all_destinations(backup, archive_path, config)

        outcome = aggregate_backup_status(statuses)
        if not statuses:
            backup.fail("No destinations left to upload to")
        elif outcome == Backup.FAILED:
            backup.fail("Upload failed for every destination")
        else:
            backup.finish(outcome)
        backup.save()

    except Exception as e:
        logger.error(f"Backup {backup.id} failed: {e}", exc_info=True)
        fail_backup(backup, str(e))
        raise

    logger.info("=" * 80)
    logger.info(f"Backup {backup.id} finished: {backup.status}")
    logger.info("=" * 80)

    return backup


@shared_task(
    bind=True,
    name="apps.backups.tasks.perform_backup",
    max_retries=0,
)
def perform_backup(
    self,
    backup_id: Optional[str] = None,
    triggered_by: str = Backup.TRIGGER_SCHEDULED,
    user_id: Optional[int] = None,
):
    """
    Execute a backup run.

    Manual triggers create the Backup row in the request and pass its ID.
    The recurring schedule passes no ID, so the run is created here.

    Returns:
        Dictionary with the backup ID and final status, or None when there
        was nothing to back up to
    """
    if backup_id is None:
        user = User.objects.filter(pk=user_id).first() if user_id else None
        try:
            backup = create_backup_run(triggered_by, user=user)
        except NoActiveDestinationsError:
            logger.warning(f"{triggered_by.capitalize()} backup skipped: no active destinations")
            return None
        backup_id = backup.id

    backup = execute_backup(backup_id)
    return {"backup_id": str(backup.id), "status": backup.status}
