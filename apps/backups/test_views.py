"""
API tests for the staff backup endpoints and the setup-time restore endpoints.
"""

from unittest.mock import Mock, patch

from django.urls import reverse

import pytest

from apps.backups.credentials import MASK_SENTINEL
from apps.backups.exceptions import RestoreInProgressError
from apps.backups.models import Backup, BackupDestination
from apps.backups.services import BackupScheduleService
from apps.backups.tasks import create_backup_run
from apps.core.setup import mark_setup_complete


@pytest.mark.django_db
class TestPermissions:
    @pytest.mark.parametrize(
        "url_name", ["backups:settings", "backups:history", "backups:stats", "backups:destination_list"]
    )
    def test_anonymous_rejected(self, api_client, url_name):
        response = api_client.get(reverse(url_name))

        assert response.status_code in (401, 403)

    def test_non_staff_rejected(self, api_client, django_user_model):
        user = django_user_model.objects.create_user(username="clerk", password="pw")
        api_client.force_authenticate(user=user)

        assert api_client.get(reverse("backups:destination_list")).status_code == 403
        assert api_client.post(reverse("backups:create")).status_code == 403


@pytest.mark.django_db
class TestBackupSettingsAPI:
    def test_defaults(self, staff_client):
        response = staff_client.get(reverse("backups:settings"))

        assert response.status_code == 200
        assert response.json() == {"schedule": "none", "retention_days": 30}

    def test_update(self, staff_client):
        response = staff_client.put(
            reverse("backups:settings"), {"schedule": "weekly", "retention_days": 14}, format="json"
        )

        assert response.status_code == 200
        assert response.json() == {"schedule": "weekly", "retention_days": 14}
        assert BackupScheduleService.get_scheduled_task().crontab.day_of_week == "0"

    def test_partial_update_keeps_other_value(self, staff_client):
        staff_client.put(
            reverse("backups:settings"), {"schedule": "daily", "retention_days": 14}, format="json"
        )

        response = staff_client.put(
            reverse("backups:settings"), {"retention_days": 7}, format="json"
        )

        assert response.json() == {"schedule": "daily", "retention_days": 7}

    @pytest.mark.parametrize(
        "payload", [{"schedule": "hourly"}, {"retention_days": 0}, {"retention_days": "soon"}]
    )
    def test_invalid_values(self, staff_client, payload):
        response = staff_client.put(reverse("backups:settings"), payload, format="json")

        assert response.status_code == 400
        assert BackupScheduleService.get_scheduled_task() is None


@pytest.mark.django_db
class TestBackupRunsAPI:
    def test_create_queues_backup(self, staff_client, s3_destination):
        with patch("apps.backups.services.perform_backup"):
            response = staff_client.post(reverse("backups:create"))

        assert response.status_code == 202
        backup = Backup.objects.get()
        assert response.json() == {"id": str(backup.id)}
        assert backup.triggered_by == Backup.TRIGGER_MANUAL

    def test_create_without_destinations(self, staff_client):
        response = staff_client.post(reverse("backups:create"))

        assert response.status_code == 400
        assert response.json() == {"error": "No active backup destinations configured"}
        assert not Backup.objects.exists()

    def test_history_includes_uploads(self, staff_client, s3_destination, admin_user):
        create_backup_run(Backup.TRIGGER_MANUAL, user=admin_user)

        response = staff_client.get(reverse("backups:history"))

        assert response.status_code == 200
        (entry,) = response.json()
        assert entry["status"] == Backup.PENDING
        assert entry["user_name"] == admin_user.username
        (upload,) = entry["uploads"]
        assert upload["destination_name"] == "Primary S3"
        assert upload["destination_provider"] == "s3"
        assert upload["status"] == "pending"

    def test_stats(self, staff_client, s3_destination):
        create_backup_run(Backup.TRIGGER_MANUAL)

        response = staff_client.get(reverse("backups:stats"))

        assert response.status_code == 200
        assert response.json()["total_backups"] == 1
        assert response.json()["last_successful_backup"] is None

    def test_delete(self, staff_client, s3_destination):
        backup = create_backup_run(Backup.TRIGGER_MANUAL)

        with patch("apps.backups.services.get_storage_backend_for_destination"):
            response = staff_client.delete(reverse("backups:detail", args=[backup.id]))

        assert response.status_code == 204
        assert not Backup.objects.exists()

    def test_delete_unknown(self, staff_client):
        response = staff_client.delete(
            reverse("backups:detail", args=["00000000-0000-0000-0000-000000000000"])
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Backup not found"}


@pytest.mark.django_db
class TestDestinationAPI:
    def test_list_masks_secrets(self, staff_client, s3_destination, gdrive_destination):
        response = staff_client.get(reverse("backups:destination_list"))

        assert response.status_code == 200
        by_provider = {item["provider"]: item["credentials"] for item in response.json()}
        assert by_provider["s3"]["secret_access_key"] == MASK_SENTINEL
        assert by_provider["s3"]["access_key_id"] == "AKIATEST"
        assert by_provider["gdrive"]["refresh_token"] == MASK_SENTINEL
        assert by_provider["gdrive"]["folder_id"] == "folder123"
        assert "s3-secret" not in response.content.decode()

    def test_create(self, staff_client, s3_credentials):
        response = staff_client.post(
            reverse("backups:destination_list"),
            {"name": "Offsite", "provider": "s3", "credentials": {**s3_credentials, "extra": "x"}},
            format="json",
        )

        assert response.status_code == 201
        assert response.json()["credentials"]["secret_access_key"] == MASK_SENTINEL
        destination = BackupDestination.objects.get(name="Offsite")
        assert destination.credentials["secret_access_key"] == "s3-secret"
        assert "extra" not in destination.credentials
        assert destination.is_active is True

    def test_create_missing_required(self, staff_client):
        response = staff_client.post(
            reverse("backups:destination_list"),
            {"name": "Half", "provider": "b2", "credentials": {"key_id": "k"}},
            format="json",
        )

        assert response.status_code == 400
        assert "application_key" in str(response.json()["credentials"])

    def test_create_with_sentinel_rejected(self, staff_client, s3_credentials):
        response = staff_client.post(
            reverse("backups:destination_list"),
            {
                "name": "Copy",
                "provider": "s3",
                "credentials": {**s3_credentials, "secret_access_key": MASK_SENTINEL},
            },
            format="json",
        )

        assert response.status_code == 400
        assert not BackupDestination.objects.filter(name="Copy").exists()

    def test_update_keeps_masked_secret(self, staff_client, s3_destination):
        detail_url = reverse("backups:destination_detail", args=[s3_destination.id])
        credentials = staff_client.get(detail_url).json()["credentials"]
        credentials["bucket"] = "new-bucket"

        response = staff_client.patch(detail_url, {"credentials": credentials}, format="json")

        assert response.status_code == 200
        s3_destination.refresh_from_db()
        assert s3_destination.credentials["bucket"] == "new-bucket"
        assert s3_destination.credentials["secret_access_key"] == "s3-secret"

    def test_update_replaces_secret(self, staff_client, s3_destination):
        response = staff_client.patch(
            reverse("backups:destination_detail", args=[s3_destination.id]),
            {"credentials": {"secret_access_key": "rotated"}},
            format="json",
        )

        assert response.status_code == 200
        s3_destination.refresh_from_db()
        assert s3_destination.credentials["secret_access_key"] == "rotated"
        assert s3_destination.credentials["access_key_id"] == "AKIATEST"

    def test_rename_without_credentials(self, staff_client, s3_destination):
        response = staff_client.patch(
            reverse("backups:destination_detail", args=[s3_destination.id]),
            {"name": "Renamed"},
            format="json",
        )

        assert response.status_code == 200
        s3_destination.refresh_from_db()
        assert s3_destination.name == "Renamed"
        assert s3_destination.credentials["secret_access_key"] == "s3-secret"

    def test_provider_change_requires_new_credentials(self, staff_client, s3_destination):
        response = staff_client.patch(
            reverse("backups:destination_detail", args=[s3_destination.id]),
            {"provider": "b2"},
            format="json",
        )

        assert response.status_code == 400
        s3_destination.refresh_from_db()
        assert s3_destination.provider == "s3"

    def test_delete(self, staff_client, s3_destination):
        create_backup_run(Backup.TRIGGER_MANUAL)

        response = staff_client.delete(
            reverse("backups:destination_detail", args=[s3_destination.id])
        )

        assert response.status_code == 204
        assert not BackupDestination.objects.exists()
        assert Backup.objects.get().uploads.count() == 0

    def test_toggle(self, staff_client, s3_destination):
        url = reverse("backups:destination_toggle", args=[s3_destination.id])

        first = staff_client.post(url)
        second = staff_client.post(url)

        assert first.json()["is_active"] is False
        assert second.json()["is_active"] is True
        s3_destination.refresh_from_db()
        assert s3_destination.is_active is True

    def test_saved_test_merges_masked_values(self, staff_client, s3_destination):
        storage = Mock()
        storage.test_connection.return_value = {"success": True, "message": "ok"}

        with patch("apps.backups.views.get_storage_backend", return_value=storage) as mock_get:
            response = staff_client.post(
                reverse("backups:destination_test", args=[s3_destination.id]),
                {"credentials": {"secret_access_key": MASK_SENTINEL, "bucket": "other"}},
                format="json",
            )

        assert response.json() == {"success": True, "message": "ok"}
        provider, credentials = mock_get.call_args.args[:2]
        assert provider == "s3"
        assert credentials["secret_access_key"] == "s3-secret"
        assert credentials["bucket"] == "other"
        s3_destination.refresh_from_db()
        assert s3_destination.credentials["bucket"] == "studio-backups"

    def test_unsaved_test(self, staff_client, s3_credentials):
        storage = Mock()
        storage.test_connection.return_value = {"success": False, "message": "Access Denied"}

        with patch("apps.backups.views.get_storage_backend", return_value=storage):
            response = staff_client.post(
                reverse("backups:destination_test_unsaved"),
                {"provider": "s3", "credentials": s3_credentials},
                format="json",
            )

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Access Denied"}

    def test_unsaved_test_with_masked_values(self, staff_client, s3_credentials):
        with patch("apps.backups.views.get_storage_backend") as mock_get:
            response = staff_client.post(
                reverse("backups:destination_test_unsaved"),
                {"provider": "s3", "credentials": {**s3_credentials, "secret_access_key": MASK_SENTINEL}},
                format="json",
            )

        assert response.json()["success"] is False
        mock_get.assert_not_called()

    def test_unsaved_test_missing_fields(self, staff_client):
        response = staff_client.post(
            reverse("backups:destination_test_unsaved"),
            {"provider": "gdrive", "credentials": {"folder_id": "f"}},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert "refresh_token" in response.json()["message"]


@pytest.mark.django_db
class TestSetupRestoreAPI:
    def test_connection(self, api_client, s3_credentials):
        with patch(
            "apps.backups.setup_views.RestoreService.test_connection",
            return_value={"success": True, "message": "ok"},
        ) as mock_test:
            response = api_client.post(
                reverse("setup:restore_test"),
                {"provider": "s3", "credentials": s3_credentials},
                format="json",
            )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "ok"}
        mock_test.assert_called_once_with("s3", s3_credentials)

    def test_list(self, api_client, s3_credentials):
        items = [{"key": "backups/backup.tar.gz", "size": 10, "last_modified": "2024-01-01"}]

        with patch("apps.backups.setup_views.RestoreService.list_backups", return_value=items):
            response = api_client.post(
                reverse("setup:restore_list"),
                {"provider": "s3", "credentials": s3_credentials},
                format="json",
            )

        assert response.json() == items

    def test_execute(self, api_client, s3_credentials):
        with patch(
            "apps.backups.setup_views.RestoreService.execute",
            return_value={"success": True, "manifest": {}},
        ) as mock_execute:
            response = api_client.post(
                reverse("setup:restore_execute"),
                {"provider": "s3", "credentials": s3_credentials, "backup_key": "backups/b.tar.gz"},
                format="json",
            )

        assert response.status_code == 200
        mock_execute.assert_called_once_with("s3", "backups/b.tar.gz", s3_credentials)

    def test_execute_requires_key(self, api_client):
        response = api_client.post(
            reverse("setup:restore_execute"), {"provider": "s3"}, format="json"
        )

        assert response.status_code == 400
        assert "backup_key" in response.json()

    def test_unknown_provider(self, api_client):
        response = api_client.post(
            reverse("setup:restore_test"), {"provider": "ftp"}, format="json"
        )

        assert response.status_code == 400

    def test_restore_in_progress(self, api_client):
        with patch(
            "apps.backups.setup_views.RestoreService.execute",
            side_effect=RestoreInProgressError(),
        ):
            response = api_client.post(
                reverse("setup:restore_execute"),
                {"provider": "s3", "backup_key": "backups/b.tar.gz"},
                format="json",
            )

        assert response.status_code == 409
        assert response.json() == {"error": "A restore is already in progress"}

    @pytest.mark.parametrize(
        "url_name", ["setup:restore_test", "setup:restore_list", "setup:restore_execute"]
    )
    def test_rejected_once_setup_complete(self, api_client, url_name):
        mark_setup_complete()

        with patch("apps.backups.setup_views.RestoreService") as mock_service:
            response = api_client.post(
                reverse(url_name),
                {"provider": "s3", "backup_key": "backups/b.tar.gz"},
                format="json",
            )

        assert response.status_code == 403
        assert response.json() == {"error": "Setup already completed"}
        assert mock_service.mock_calls == []
