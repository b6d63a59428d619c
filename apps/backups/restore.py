"""
Disaster recovery restore for a fresh install.

The setup endpoints only allow a restore while initial setup is incomplete;
the restore_backup command can run at any time. A restore:
1. Builds a storage backend from the credentials supplied by the caller
2. Downloads the selected archive into a temporary directory
3. Extracts and verifies it
4. Restores the database dump with psql (all or nothing)
5. Copies the uploads tree into MEDIA_ROOT
6. Re-applies migrations so the schema matches the running code
7. Marks setup complete (setup endpoints only)

The temporary directory is removed whatever the outcome, and only one
restore can run at a time.
"""

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.core.cache import cache
from django.core.management import call_command

from apps.core.setup import ensure_setup_incomplete, mark_setup_complete

from .archive import extract_backup_archive, get_database_config, locate_contents
from .credentials import clean_credentials
from .exceptions import BackupError, DatabaseRestoreError, RestoreInProgressError
from .storage import get_storage_backend

logger = logging.getLogger(__name__)

RESTORE_LOCK_KEY = "backups:restore:lock"


def perform_psql_restore(
    dump_path: str, database: str, user: str, password: str, host: str, port: str
) -> Tuple[bool, Optional[str]]:
    """
    Restore a plain-format dump with psql.

    The public schema is dropped and recreated before the dump is replayed,
    all inside one transaction with ON_ERROR_STOP, so a failure leaves the
    database as it was.

    Args:
        dump_path: Path to the SQL dump
        database: Database name
        user: Database user
        password: Database password
        host: Database host
        port: Database port

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    timeout = settings.BACKUP_RESTORE_TIMEOUT

    env = os.environ.copy()
    env["PGPASSWORD"] = password or ""

    cmd = [
        "psql",
        "-v",
        "ON_ERROR_STOP=1",
        "--single-transaction",
        "--quiet",
        "-h",
        host,
        "-p",
        port,
        "-U",
        user,
        "-d",
        database,
        "-c",
        "DROP SCHEMA IF EXISTS public CASCADE",
        "-c",
        "CREATE SCHEMA public",
        "-f",
        dump_path,
    ]

    logger.warning(f"Replacing database {database} with {dump_path}")

    try:
        result = subprocess.run(cmd, env=env, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        error_msg = f"psql restore timed out after {timeout} seconds"
        logger.error(error_msg)
        return False, error_msg
    except OSError as e:
        error_msg = f"psql could not be started: {e}"
        logger.error(error_msg)
        return False, error_msg

    if result.returncode != 0:
        error_msg = f"psql restore failed with return code {result.returncode}: {result.stderr}"
        logger.error(error_msg)
        return False, error_msg

    logger.info("Database restore completed successfully")
    return True, None


def restore_database(dump_path) -> None:
    db_config = get_database_config()
    success, error_msg = perform_psql_restore(
        dump_path=str(dump_path),
        database=db_config["name"],
        user=db_config["user"],
        password=db_config["password"],
        host=db_config["host"],
        port=db_config["port"],
    )
    if not success:
        raise DatabaseRestoreError(error_msg)


def restore_uploads(uploads_dir) -> None:
    """Copy an extracted uploads tree over MEDIA_ROOT, replacing existing files."""
    target = Path(settings.MEDIA_ROOT)
    target.mkdir(parents=True, exist_ok=True)
    shutil.copytree(uploads_dir, target, dirs_exist_ok=True)
    logger.info(f"Restored uploads into {target}")


def sync_schema() -> None:
    """Bring the restored schema up to date with the installed migrations."""
    call_command("migrate", interactive=False, verbosity=0)
    logger.info("Applied migrations after restore")


def newest_first(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(items, key=lambda item: item["last_modified"], reverse=True)


def restore_from_storage(storage, backup_key: str, prefix: str = "restore-") -> Dict[str, Any]:
    """
    Download ``backup_key`` from ``storage`` and restore the install from it.

    Holds the restore lock for the whole run and removes the temporary
    directory whatever the outcome.

    Returns:
        The archive manifest

    Raises:
        RestoreInProgressError: If another restore is running
        StorageError, ArchiveError, DatabaseRestoreError: If a step fails
    """
    if not cache.add(RESTORE_LOCK_KEY, "1", timeout=settings.BACKUP_RESTORE_LOCK_TTL):
        raise RestoreInProgressError()

    try:
        with tempfile.TemporaryDirectory(
            prefix=prefix, dir=settings.BACKUP_TEMP_DIR, ignore_cleanup_errors=True
        ) as temp_dir:
            archive_path = Path(temp_dir) / "backup.tar.gz"
            extract_dir = Path(temp_dir) / "extracted"

            storage.download(backup_key, str(archive_path))
            manifest = extract_backup_archive(archive_path, extract_dir)
            contents = locate_contents(extract_dir)

            if contents.dump_path is not None:
                restore_database(contents.dump_path)
            else:
                logger.warning("Archive has no database dump, skipping database restore")

            if contents.uploads_dir is not None:
                restore_uploads(contents.uploads_dir)

            sync_schema()
    finally:
        cache.delete(RESTORE_LOCK_KEY)

    return manifest


class RestoreService:
    """Setup-time restore operations. Every call requires setup to be incomplete."""

    @staticmethod
    def test_connection(provider: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        ensure_setup_incomplete()
        try:
            storage = get_storage_backend(provider, clean_credentials(provider, credentials))
        except BackupError as e:
            return {"success": False, "message": str(e)}
        return storage.test_connection()

    @staticmethod
    def list_backups(provider: str, credentials: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Available archives, newest first. Any failure yields an empty list."""
        ensure_setup_incomplete()
        try:
            storage = get_storage_backend(provider, clean_credentials(provider, credentials))
            items = storage.list()
        except Exception as e:
            logger.warning(f"Could not list {provider} backups during setup: {e}")
            return []
        return newest_first(items)

    @staticmethod
    def execute(provider: str, backup_key: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """
        Restore the install from ``backup_key``.

        Returns:
            Dictionary with "success" and the archive manifest

        Raises:
            SetupAlreadyCompletedError: If setup has already been completed
            RestoreInProgressError: If another restore is running
            StorageError, ArchiveError, DatabaseRestoreError: If a step fails
        """
        ensure_setup_incomplete()
        storage = get_storage_backend(provider, clean_credentials(provider, credentials))

        logger.info("=" * 80)
        logger.info(f"Starting setup restore of {backup_key} from {provider}")
        logger.info("=" * 80)

        manifest = restore_from_storage(storage, backup_key, prefix="setup-restore-")
        mark_setup_complete()

        logger.info("=" * 80)
        logger.info(f"Setup restore of {backup_key} completed")
        logger.info("=" * 80)

        return {"success": True, "manifest": manifest}
