"""
Backup archive format.

An archive is a gzip-compressed tar with these members at its root:
- manifest.json: format version, app/runtime versions, the schema marker
  (latest applied migration per app) and an inventory of every packed file
  with its size and SHA-256
- database.sql: plain-format pg_dump of the application database
- uploads/: snapshot of MEDIA_ROOT, when it exists

Extraction validates every member before anything is written, checks the
inventory afterwards, and never leaves a partial extraction behind.
"""

import hashlib
import json
import logging
import os
import platform
import shutil
import subprocess
import tarfile
import zlib
from collections import namedtuple
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

import django
from django.conf import settings
from django.db import connection
from django.db.migrations.recorder import MigrationRecorder
from django.utils import timezone

from .exceptions import ArchiveError

logger = logging.getLogger(__name__)

FORMAT_VERSION = "2"
MANIFEST_NAME = "manifest.json"
DATABASE_DUMP_NAME = "database.sql"
UPLOADS_DIR_NAME = "uploads"
WORK_DIR_NAME = "backup-work"

ArchiveContents = namedtuple("ArchiveContents", ["dump_path", "uploads_dir"])


def get_database_config() -> dict:
    """
    Get database configuration from Django settings.

    Returns:
        Dictionary with database connection parameters
    """
    db_config = settings.DATABASES["default"]
    return {
        "name": str(db_config["NAME"]),
        "user": db_config.get("USER", ""),
        "password": db_config.get("PASSWORD", ""),
        "host": db_config.get("HOST", "") or "localhost",
        "port": str(db_config.get("PORT", "") or "5432"),
    }


def generate_archive_name(now: Optional[datetime] = None) -> str:
    """Return the archive file name, e.g. backup-2024-01-31-020000.tar.gz."""
    now = now or timezone.localtime()
    return f"backup-{now:%Y-%m-%d-%H%M%S}.tar.gz"


def create_pg_dump(
    output_path: str, database: str, user: str, password: str, host: str, port: str
) -> Tuple[bool, Optional[str]]:
    """
    Create a plain-format PostgreSQL dump using pg_dump.

    Args:
        output_path: Path where the dump file will be created
        database: Database name
        user: Database user
        password: Database password
        host: Database host
        port: Database port

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    timeout = settings.BACKUP_DUMP_TIMEOUT

    # Set up environment for pg_dump
    env = os.environ.copy()
    env["PGPASSWORD"] = password or ""

    cmd = [
        "pg_dump",
        "--format=plain",
        "--no-owner",
        "--no-privileges",
        "-h",
        host,
        "-p",
        port,
        "-U",
        user,
        "-d",
        database,
        "-f",
        output_path,
    ]

    logger.info(f"Starting pg_dump for database {database}")

    try:
        result = subprocess.run(cmd, env=env, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        error_msg = f"pg_dump timed out after {timeout} seconds"
        logger.error(error_msg)
        return False, error_msg
    except OSError as e:
        error_msg = f"pg_dump could not be started: {e}"
        logger.error(error_msg)
        return False, error_msg

    if result.returncode != 0:
        error_msg = f"pg_dump failed with return code {result.returncode}: {result.stderr}"
        logger.error(error_msg)
        return False, error_msg

    logger.info(f"pg_dump completed successfully: {output_path}")
    return True, None


def sha256_file(path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as file:
        for chunk in iter(lambda: file.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def build_file_inventory(root) -> List[Dict[str, Any]]:
    """Inventory every regular file under ``root`` except the manifest itself."""
    root = Path(root)
    inventory = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.is_symlink():
            continue
        relative = path.relative_to(root).as_posix()
        if relative == MANIFEST_NAME:
            continue
        inventory.append(
            {"path": relative, "size": path.stat().st_size, "sha256": sha256_file(path)}
        )
    return inventory


def get_migration_state() -> Dict[str, str]:
    """Latest applied migration per app; identifies the schema the dump was taken from."""
    state = {}
    for app_label, name in MigrationRecorder(connection).applied_migrations():
        if name > state.get(app_label, ""):
            state[app_label] = name
    return state


def build_manifest(work_dir, database_name: str) -> Dict[str, Any]:
    return {
        "format_version": FORMAT_VERSION,
        "app_version": settings.APP_VERSION,
        "created_at": timezone.now().isoformat(),
        "database": database_name,
        "python_version": platform.python_version(),
        "django_version": django.get_version(),
        "migration_state": get_migration_state(),
        "files": build_file_inventory(work_dir),
    }


def create_backup_archive(temp_dir) -> Tuple[str, Dict[str, Any]]:
    """
    Build a backup archive inside ``temp_dir``.

    The database is dumped and MEDIA_ROOT copied into a work directory under
    ``temp_dir``, a manifest is written, and the work directory is packed and
    then removed.

    Args:
        temp_dir: Directory that receives the archive

    Returns:
        Tuple of (archive_path, manifest)

    Raises:
        ArchiveError: If the dump or the archive could not be created
    """
    temp_dir = Path(temp_dir)
    work_dir = temp_dir / WORK_DIR_NAME
    work_dir.mkdir(parents=True, exist_ok=True)

    try:
        db_config = get_database_config()

        success, error_msg = create_pg_dump(
            output_path=str(work_dir / DATABASE_DUMP_NAME),
            database=db_config["name"],
            user=db_config["user"],
            password=db_config["password"],
            host=db_config["host"],
            port=db_config["port"],
        )
        if not success:
            raise ArchiveError(f"pg_dump failed: {error_msg}")

        uploads_source = Path(settings.MEDIA_ROOT)
        if uploads_source.is_dir():
            shutil.copytree(uploads_source, work_dir / UPLOADS_DIR_NAME)
            logger.info(f"Copied uploads from {uploads_source}")

        manifest = build_manifest(work_dir, db_config["name"])
        with open(work_dir / MANIFEST_NAME, "w", encoding="utf-8") as file:
            json.dump(manifest, file, indent=2)

        archive_path = temp_dir / generate_archive_name()
        with tarfile.open(archive_path, "w:gz") as tar:
            for entry in sorted(work_dir.iterdir()):
                tar.add(entry, arcname=entry.name)

    except (OSError, tarfile.TarError) as e:
        raise ArchiveError(f"Failed to create backup archive: {e}") from e
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    size = archive_path.stat().st_size
    logger.info(f"Created backup archive {archive_path.name}: {size / (1024**2):.2f} MB")
    return str(archive_path), manifest


def _check_relative_path(name: str) -> None:
    path = PurePosixPath(name)
    if path.is_absolute() or name.startswith(("/", "\\")):
        raise ArchiveError(f"Archive member has an absolute path: {name}")
    if ".." in path.parts:
        raise ArchiveError(f"Archive member escapes the extraction directory: {name}")


def _validate_member(member: tarfile.TarInfo) -> None:
    _check_relative_path(member.name)
    if not (member.isfile() or member.isdir()):
        raise ArchiveError(f"Archive member is not a regular file or directory: {member.name}")


def _remove_extracted(dest_dir: Path, members, remove_dest: bool) -> None:
    if remove_dest:
        shutil.rmtree(dest_dir, ignore_errors=True)
        return

    top_level = {PurePosixPath(m.name).parts[0] for m in members if PurePosixPath(m.name).parts}
    for name in top_level:
        path = dest_dir / name
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        elif path.exists():
            path.unlink()


def _verify_inventory(dest_dir: Path, manifest: Dict[str, Any]) -> None:
    files = manifest.get("files")
    if files is None:
        # Archives written before the inventory existed carry no file list
        logger.warning("Manifest has no file inventory, skipping verification")
        return
    if not isinstance(files, list):
        raise ArchiveError("Manifest file inventory is malformed")

    for entry in files:
        try:
            relative, size, checksum = entry["path"], entry["size"], entry["sha256"]
        except (KeyError, TypeError) as e:
            raise ArchiveError(f"Manifest file entry is malformed: {entry!r}") from e

        _check_relative_path(relative)
        path = dest_dir / relative
        if not path.is_file():
            raise ArchiveError(f"File listed in manifest is missing: {relative}")
        if path.stat().st_size != size:
            raise ArchiveError(f"Size mismatch for {relative}")
        if sha256_file(path) != checksum:
            raise ArchiveError(f"Checksum mismatch for {relative}")


def extract_backup_archive(archive_path, dest_dir) -> Dict[str, Any]:
    """
    Extract a backup archive and return its manifest.

    Args:
        archive_path: Path to the .tar.gz archive
        dest_dir: Directory to extract into (created if missing)

    Returns:
        The manifest embedded in the archive

    Raises:
        ArchiveError: If the archive is corrupt, contains unsafe members, has
            no manifest, or does not match its inventory. Anything extracted
            is removed first.
    """
    dest_dir = Path(dest_dir)
    created_dest = not dest_dir.exists()
    dest_dir.mkdir(parents=True, exist_ok=True)
    members = []

    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                _validate_member(member)
            # filter= needs 3.10.12+ or 3.11.4+; older interpreters raise TypeError
            tar.extractall(dest_dir, members=members, filter="data")

        manifest_path = dest_dir / MANIFEST_NAME
        if not manifest_path.is_file():
            raise ArchiveError("Archive does not contain a manifest")

        with open(manifest_path, encoding="utf-8") as file:
            manifest = json.load(file)
        if not isinstance(manifest, dict):
            raise ArchiveError("Archive manifest is not a JSON object")

        _verify_inventory(dest_dir, manifest)

    except ArchiveError as e:
        logger.error(f"Invalid backup archive {archive_path}: {e}")
        _remove_extracted(dest_dir, members, created_dest)
        raise
    except (tarfile.TarError, OSError, EOFError, zlib.error, ValueError, TypeError) as e:
        logger.error(f"Failed to extract backup archive {archive_path}: {e}")
        _remove_extracted(dest_dir, members, created_dest)
        raise ArchiveError(f"Backup archive is corrupt: {e}") from e

    logger.info(f"Extracted backup archive {archive_path} to {dest_dir}")
    return manifest


def locate_contents(dest_dir) -> ArchiveContents:
    """Find the database dump and uploads tree of an extracted archive, if present."""
    dest_dir = Path(dest_dir)
    dump_path = dest_dir / DATABASE_DUMP_NAME
    uploads_dir = dest_dir / UPLOADS_DIR_NAME
    return ArchiveContents(
        dump_path=dump_path if dump_path.is_file() else None,
        uploads_dir=uploads_dir if uploads_dir.is_dir() else None,
    )
