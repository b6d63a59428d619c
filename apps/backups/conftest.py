"""
Pytest configuration and fixtures for backup tests.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from apps.backups.models import BackupDestination


@pytest.fixture
def api_client():
    """
    Fixture for Django REST framework API client.
    """
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def staff_client(api_client, admin_user):
    """
    API client authenticated as a superuser.
    """
    api_client.force_authenticate(user=admin_user)
    return api_client


@pytest.fixture
def media_root(tmp_path, settings):
    """
    Point MEDIA_ROOT at a temporary uploads tree with a couple of files.
    """
    root = tmp_path / "media"
    (root / "logos").mkdir(parents=True)
    (root / "logos" / "company.png").write_bytes(b"\x89PNG fake logo")
    (root / "receipts.txt").write_text("receipt 1\n")
    settings.MEDIA_ROOT = root
    return root


@pytest.fixture
def backup_temp_dir(tmp_path, settings):
    """
    Dedicated BACKUP_TEMP_DIR so tests can check that nothing is left behind.
    """
    temp_dir = tmp_path / "backup-tmp"
    temp_dir.mkdir()
    settings.BACKUP_TEMP_DIR = str(temp_dir)
    return temp_dir


def write_fake_dump(output_path, database, user, password, host, port):
    Path(output_path).write_text("-- fake dump\nCREATE TABLE demo (id integer);\n")
    return True, None


@pytest.fixture
def fake_pg_dump():
    """
    Replace pg_dump with a function that writes a small SQL file.
    """
    with patch("apps.backups.archive.create_pg_dump", side_effect=write_fake_dump) as mock_dump:
        yield mock_dump


@pytest.fixture
def s3_credentials():
    return {
        "access_key_id": "AKIATEST",
        "secret_access_key": "s3-secret",
        "bucket": "studio-backups",
        "region": "eu-west-1",
        "endpoint": "",
    }


@pytest.fixture
def gdrive_credentials():
    return {"refresh_token": "1//refresh-token", "folder_id": "folder123"}


@pytest.fixture
def s3_destination(db, s3_credentials):
    return BackupDestination.objects.create(
        name="Primary S3", provider="s3", credentials=s3_credentials
    )


@pytest.fixture
def gdrive_destination(db, gdrive_credentials):
    return BackupDestination.objects.create(
        name="Drive", provider="gdrive", credentials=gdrive_credentials
    )


@pytest.fixture
def google_client(settings):
    """
    OAuth client configured through the environment fallback.
    """
    settings.GOOGLE_OAUTH_CLIENT_ID = "client-id.apps.googleusercontent.com"
    settings.GOOGLE_OAUTH_CLIENT_SECRET = "client-secret"
    return settings.GOOGLE_OAUTH_CLIENT_ID, settings.GOOGLE_OAUTH_CLIENT_SECRET
