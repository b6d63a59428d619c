"""
Tests for credential masking, merging and the legacy settings migration.
"""

import json

import pytest

from apps.backups.credentials import (
    LEGACY_KEYS,
    MASK_SENTINEL,
    SENSITIVE_FIELDS,
    clean_credentials,
    has_masked_values,
    mask_credentials,
    merge_credentials,
    migrate_legacy_settings,
)
from apps.backups.exceptions import UnsupportedProviderError
from apps.backups.models import BackupDestination
from apps.core.models import AppSetting


class TestMasking:
    def test_sensitive_fields_per_provider(self):
        assert SENSITIVE_FIELDS["s3"] == ["secret_access_key"]
        assert SENSITIVE_FIELDS["b2"] == ["application_key"]
        assert set(SENSITIVE_FIELDS["gdrive"]) == {"refresh_token", "client_secret"}

    def test_mask_hides_only_sensitive_values(self, s3_credentials):
        masked = mask_credentials("s3", s3_credentials)

        assert masked["secret_access_key"] == MASK_SENTINEL
        assert masked["access_key_id"] == "AKIATEST"
        assert masked["bucket"] == "studio-backups"
        # Original is untouched
        assert s3_credentials["secret_access_key"] == "s3-secret"

    def test_empty_secret_is_not_masked(self):
        masked = mask_credentials("b2", {"application_key": "", "key_id": "kid"})

        assert masked["application_key"] == ""

    def test_masked_output_never_contains_secret(self, gdrive_credentials):
        credentials = dict(gdrive_credentials, client_secret="top-secret")

        serialized = json.dumps(mask_credentials("gdrive", credentials))

        assert "1//refresh-token" not in serialized
        assert "top-secret" not in serialized

    def test_has_masked_values(self):
        assert has_masked_values({"a": "x", "b": MASK_SENTINEL})
        assert not has_masked_values({"a": "x"})
        assert not has_masked_values(None)


class TestCleanCredentials:
    def test_unknown_keys_dropped_and_values_stripped(self):
        cleaned = clean_credentials(
            "s3", {"bucket": " studio ", "access_key_id": "AKIA", "rogue": "x", "region": None}
        )

        assert cleaned == {"bucket": "studio", "access_key_id": "AKIA", "region": ""}

    def test_unknown_provider(self):
        with pytest.raises(UnsupportedProviderError):
            clean_credentials("dropbox", {})


class TestMergeCredentials:
    def test_sentinel_round_trip_keeps_stored_secret(self, s3_credentials):
        echoed = mask_credentials("s3", s3_credentials)
        echoed["bucket"] = "renamed-bucket"

        merged = merge_credentials(s3_credentials, echoed, "s3")

        assert merged["secret_access_key"] == "s3-secret"
        assert merged["bucket"] == "renamed-bucket"

    def test_new_secret_replaces_stored(self, s3_credentials):
        merged = merge_credentials(s3_credentials, {"secret_access_key": "rotated"}, "s3")

        assert merged["secret_access_key"] == "rotated"

    def test_missing_fields_keep_stored_values(self, s3_credentials):
        merged = merge_credentials(s3_credentials, {"region": "us-east-2"}, "s3")

        assert merged["access_key_id"] == "AKIATEST"
        assert merged["region"] == "us-east-2"

    def test_sentinel_on_non_sensitive_field_is_literal(self, s3_credentials):
        merged = merge_credentials(s3_credentials, {"bucket": MASK_SENTINEL}, "s3")

        assert merged["bucket"] == MASK_SENTINEL

    def test_unknown_keys_ignored(self, s3_credentials):
        merged = merge_credentials(s3_credentials, {"password": "x"}, "s3")

        assert "password" not in merged


@pytest.mark.django_db
class TestLegacyMigration:
    """Test the one-shot move from flat settings to a destination."""

    def set_legacy(self, **values):
        for key, value in values.items():
            AppSetting.set_value(key, value)

    def test_legacy_keys_cover_every_provider(self):
        assert "backup_provider" in LEGACY_KEYS
        assert "backup_s3_secret_key" in LEGACY_KEYS
        assert "backup_b2_app_key" in LEGACY_KEYS
        assert "backup_gdrive_refresh_token" in LEGACY_KEYS

    def test_migrates_s3_settings(self):
        self.set_legacy(
            backup_provider="s3",
            backup_s3_access_key="AKIA",
            backup_s3_secret_key="secret",
            backup_s3_bucket="bucket",
            backup_s3_region="eu-west-1",
        )

        destination = migrate_legacy_settings()

        assert destination.provider == "s3"
        assert destination.name == "S3-Compatible Storage"
        assert destination.is_active is True
        assert destination.credentials["secret_access_key"] == "secret"
        assert destination.credentials["region"] == "eu-west-1"
        assert destination.credentials["endpoint"] == ""

    def test_disabled_legacy_backups_migrate_inactive(self):
        self.set_legacy(
            backup_provider="b2",
            backup_enabled="false",
            backup_b2_key_id="kid",
            backup_b2_app_key="key",
            backup_b2_bucket="bucket",
            backup_b2_endpoint="s3.us-west-004.backblazeb2.com",
        )

        destination = migrate_legacy_settings()

        assert destination.provider == "b2"
        assert destination.is_active is False

    def test_idempotent(self):
        self.set_legacy(
            backup_provider="gdrive",
            backup_gdrive_refresh_token="1//token",
            backup_gdrive_folder_id="folder",
        )

        first = migrate_legacy_settings()
        second = migrate_legacy_settings()

        assert first is not None
        assert second is None
        assert BackupDestination.objects.count() == 1

    def test_skipped_when_destinations_exist(self, s3_destination):
        self.set_legacy(backup_provider="b2", backup_b2_key_id="kid")

        assert migrate_legacy_settings() is None
        assert BackupDestination.objects.count() == 1

    @pytest.mark.parametrize("provider", ["", "none", "ftp"])
    def test_no_provider_nothing_migrated(self, provider):
        self.set_legacy(backup_provider=provider)

        assert migrate_legacy_settings() is None
        assert not BackupDestination.objects.exists()

    def test_empty_provider_settings_nothing_migrated(self):
        self.set_legacy(backup_provider="s3")

        assert migrate_legacy_settings() is None
