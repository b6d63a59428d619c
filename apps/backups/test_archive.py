"""
Tests for the backup archive format.

These tests verify:
1. Archive layout and manifest contents
2. Extraction of a valid archive
3. Rejection of corrupt, unsafe or tampered archives, with nothing left behind
4. pg_dump invocation
"""

import io
import json
import os
import tarfile
from pathlib import Path
from unittest.mock import Mock, patch

from django.test import TestCase

import pytest

from apps.backups.archive import (
    DATABASE_DUMP_NAME,
    FORMAT_VERSION,
    MANIFEST_NAME,
    UPLOADS_DIR_NAME,
    WORK_DIR_NAME,
    create_backup_archive,
    create_pg_dump,
    extract_backup_archive,
    generate_archive_name,
    locate_contents,
)
from apps.backups.exceptions import ArchiveError


def add_bytes(tar, name, data):
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tar.addfile(info, io.BytesIO(data))


def write_archive(path, members):
    with tarfile.open(path, "w:gz") as tar:
        for name, data in members.items():
            add_bytes(tar, name, data)
    return path


def manifest_bytes(**extra):
    return json.dumps({"format_version": FORMAT_VERSION, **extra}).encode()


@pytest.mark.django_db
class TestCreateBackupArchive:
    def test_archive_layout(self, tmp_path, media_root, fake_pg_dump):
        archive_path, manifest = create_backup_archive(tmp_path / "out")

        with tarfile.open(archive_path, "r:gz") as tar:
            names = set(tar.getnames())

        assert MANIFEST_NAME in names
        assert DATABASE_DUMP_NAME in names
        assert f"{UPLOADS_DIR_NAME}/logos/company.png" in names
        assert f"{UPLOADS_DIR_NAME}/receipts.txt" in names
        assert Path(archive_path).name.startswith("backup-")
        assert archive_path.endswith(".tar.gz")
        # Work directory is cleaned up, only the archive remains
        assert not (tmp_path / "out" / WORK_DIR_NAME).exists()

    def test_manifest_contents(self, tmp_path, media_root, fake_pg_dump, settings):
        _, manifest = create_backup_archive(tmp_path)

        assert manifest["format_version"] == FORMAT_VERSION
        assert manifest["app_version"] == settings.APP_VERSION
        assert "backups" in manifest["migration_state"]
        paths = {entry["path"] for entry in manifest["files"]}
        assert paths == {
            DATABASE_DUMP_NAME,
            f"{UPLOADS_DIR_NAME}/logos/company.png",
            f"{UPLOADS_DIR_NAME}/receipts.txt",
        }
        for entry in manifest["files"]:
            assert len(entry["sha256"]) == 64

    def test_missing_media_root_is_skipped(self, tmp_path, settings, fake_pg_dump):
        settings.MEDIA_ROOT = tmp_path / "does-not-exist"

        archive_path, manifest = create_backup_archive(tmp_path)

        with tarfile.open(archive_path, "r:gz") as tar:
            assert not any(name.startswith(UPLOADS_DIR_NAME) for name in tar.getnames())
        assert [entry["path"] for entry in manifest["files"]] == [DATABASE_DUMP_NAME]

    def test_dump_failure_raises_and_cleans_up(self, tmp_path, media_root):
        with patch(
            "apps.backups.archive.create_pg_dump", return_value=(False, "connection refused")
        ):
            with pytest.raises(ArchiveError, match="connection refused"):
                create_backup_archive(tmp_path / "out")

        assert list((tmp_path / "out").iterdir()) == []


@pytest.mark.django_db
class TestExtractBackupArchive:
    def test_round_trip(self, tmp_path, media_root, fake_pg_dump):
        archive_path, manifest = create_backup_archive(tmp_path / "out")
        dest = tmp_path / "extracted"

        extracted_manifest = extract_backup_archive(archive_path, dest)
        contents = locate_contents(dest)

        assert extracted_manifest == manifest
        assert contents.dump_path == dest / DATABASE_DUMP_NAME
        assert (contents.uploads_dir / "logos" / "company.png").read_bytes() == (
            b"\x89PNG fake logo"
        )

    def test_archive_without_dump_or_uploads(self, tmp_path):
        archive = write_archive(tmp_path / "a.tar.gz", {MANIFEST_NAME: manifest_bytes(files=[])})

        extract_backup_archive(archive, tmp_path / "x")
        contents = locate_contents(tmp_path / "x")

        assert contents.dump_path is None
        assert contents.uploads_dir is None

    def test_legacy_manifest_without_inventory(self, tmp_path):
        archive = write_archive(
            tmp_path / "a.tar.gz",
            {MANIFEST_NAME: json.dumps({"version": "1"}).encode(), DATABASE_DUMP_NAME: b"--"},
        )

        manifest = extract_backup_archive(archive, tmp_path / "x")

        assert manifest == {"version": "1"}


class TestRejectedArchives:
    """Invalid archives raise ArchiveError and leave no extracted files."""

    def assert_rejected(self, archive, dest, match=None):
        with pytest.raises(ArchiveError, match=match):
            extract_backup_archive(archive, dest)
        assert not dest.exists()

    def test_not_gzip(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        archive.write_bytes(b"this is not an archive")

        self.assert_rejected(archive, tmp_path / "x", match="corrupt")

    def test_truncated(self, tmp_path):
        archive = write_archive(
            tmp_path / "a.tar.gz",
            {MANIFEST_NAME: manifest_bytes(), DATABASE_DUMP_NAME: os.urandom(200000)},
        )
        data = archive.read_bytes()
        archive.write_bytes(data[: len(data) // 2])

        self.assert_rejected(archive, tmp_path / "x")

    def test_missing_manifest(self, tmp_path):
        archive = write_archive(tmp_path / "a.tar.gz", {DATABASE_DUMP_NAME: b"--"})

        self.assert_rejected(archive, tmp_path / "x", match="manifest")

    def test_manifest_not_an_object(self, tmp_path):
        archive = write_archive(tmp_path / "a.tar.gz", {MANIFEST_NAME: b"[1, 2]"})

        self.assert_rejected(archive, tmp_path / "x", match="JSON object")

    def test_path_traversal(self, tmp_path):
        archive = write_archive(
            tmp_path / "a.tar.gz", {MANIFEST_NAME: manifest_bytes(), "../evil.sh": b"rm -rf"}
        )

        self.assert_rejected(archive, tmp_path / "x", match="escapes")
        assert not (tmp_path / "evil.sh").exists()

    def test_absolute_path(self, tmp_path):
        archive = write_archive(
            tmp_path / "a.tar.gz", {MANIFEST_NAME: manifest_bytes(), "/etc/cron.d/evil": b"x"}
        )

        self.assert_rejected(archive, tmp_path / "x", match="absolute")

    def test_symlink_member(self, tmp_path):
        archive = tmp_path / "a.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            add_bytes(tar, MANIFEST_NAME, manifest_bytes())
            link = tarfile.TarInfo("uploads/passwd")
            link.type = tarfile.SYMTYPE
            link.linkname = "/etc/passwd"
            tar.addfile(link)

        self.assert_rejected(archive, tmp_path / "x", match="not a regular file")

    def test_checksum_mismatch(self, tmp_path):
        files = [{"path": DATABASE_DUMP_NAME, "size": 2, "sha256": "0" * 64}]
        archive = write_archive(
            tmp_path / "a.tar.gz",
            {MANIFEST_NAME: manifest_bytes(files=files), DATABASE_DUMP_NAME: b"--"},
        )

        self.assert_rejected(archive, tmp_path / "x", match="Checksum mismatch")

    def test_listed_file_missing(self, tmp_path):
        files = [{"path": "uploads/logo.png", "size": 1, "sha256": "0" * 64}]
        archive = write_archive(tmp_path / "a.tar.gz", {MANIFEST_NAME: manifest_bytes(files=files)})

        self.assert_rejected(archive, tmp_path / "x", match="missing")

    def test_interpreter_without_extraction_filter(self, tmp_path):
        archive = write_archive(tmp_path / "a.tar.gz", {MANIFEST_NAME: manifest_bytes()})

        with patch.object(
            tarfile.TarFile,
            "extractall",
            side_effect=TypeError("extractall() got an unexpected keyword argument 'filter'"),
        ):
            self.assert_rejected(archive, tmp_path / "x", match="filter")

    def test_existing_destination_is_kept_but_emptied(self, tmp_path):
        dest = tmp_path / "x"
        dest.mkdir()
        (dest / "unrelated.txt").write_text("keep me")
        archive = write_archive(tmp_path / "a.tar.gz", {DATABASE_DUMP_NAME: b"--"})

        with pytest.raises(ArchiveError):
            extract_backup_archive(archive, dest)

        assert sorted(p.name for p in dest.iterdir()) == ["unrelated.txt"]


class TestGenerateArchiveName(TestCase):
    def test_name_format(self):
        name = generate_archive_name()

        self.assertRegex(name, r"^backup-\d{4}-\d{2}-\d{2}-\d{6}\.tar\.gz$")


class TestCreatePgDump(TestCase):
    """Test PostgreSQL dump creation."""

    @patch("apps.backups.archive.subprocess.run")
    def test_create_pg_dump_success(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stderr="", stdout="")

        success, error_msg = create_pg_dump(
            output_path="/tmp/database.sql",
            database="studio",
            user="studio_user",
            password="pass",
            host="db",
            port="5432",
        )

        self.assertTrue(success)
        self.assertIsNone(error_msg)

        cmd = mock_run.call_args[0][0]
        self.assertEqual(cmd[0], "pg_dump")
        self.assertIn("--format=plain", cmd)
        self.assertIn("--no-owner", cmd)
        self.assertIn("studio", cmd)
        self.assertIn("/tmp/database.sql", cmd)
        self.assertEqual(mock_run.call_args[1]["env"]["PGPASSWORD"], "pass")

    @patch("apps.backups.archive.subprocess.run")
    def test_create_pg_dump_failure(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stderr="connection failed", stdout="")

        success, error_msg = create_pg_dump("/tmp/db.sql", "studio", "u", "p", "db", "5432")

        self.assertFalse(success)
        self.assertIn("connection failed", error_msg)

    @patch("apps.backups.archive.subprocess.run", side_effect=FileNotFoundError("pg_dump"))
    def test_pg_dump_not_installed(self, mock_run):
        success, error_msg = create_pg_dump("/tmp/db.sql", "studio", "u", "p", "db", "5432")

        self.assertFalse(success)
        self.assertIn("could not be started", error_msg)
