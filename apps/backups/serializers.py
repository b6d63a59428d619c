"""
Serializers for the backup API.

Destination credentials are masked on every read and merged on every write,
see apps.backups.credentials.
"""

from rest_framework import serializers

from .credentials import (
    REQUIRED_FIELDS,
    clean_credentials,
    has_masked_values,
    mask_credentials,
    merge_credentials,
)
from .models import Backup, BackupDestination, BackupUpload
from .services import BackupScheduleService

SCHEDULE_CHOICES = list(BackupScheduleService.CRONTABS) + list(BackupScheduleService.DISABLED)


class CredentialsField(serializers.DictField):
    """Free-form credential object; values are coerced to strings."""

    def __init__(self, **kwargs):
        kwargs.setdefault("child", serializers.CharField(allow_blank=True, allow_null=True))
        super().__init__(**kwargs)


class BackupDestinationSerializer(serializers.ModelSerializer):
    """Serializer for destination list, detail, create and update."""

    credentials = CredentialsField(required=False)

    class Meta:
        model = BackupDestination
        fields = [
            "id",
            "name",
            "provider",
            "credentials",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data["credentials"] = mask_credentials(instance.provider, instance.credentials)
        return data

    def validate(self, attrs):
        instance = self.instance
        provider = attrs.get("provider", instance.provider if instance else None)
        provider_changed = instance is not None and provider != instance.provider

        if instance is not None and "credentials" not in attrs and not provider_changed:
            return attrs

        # Stored secrets only carry over while the provider stays the same
        existing = instance.credentials if instance is not None and not provider_changed else {}
        credentials = merge_credentials(existing, attrs.get("credentials"), provider)

        if has_masked_values(credentials):
            raise serializers.ValidationError(
                {"credentials": "Masked values cannot be saved; re-enter the secret."}
            )

        missing = [field for field in REQUIRED_FIELDS[provider] if not credentials.get(field)]
        if missing:
            raise serializers.ValidationError(
                {"credentials": f"Missing required credentials for {provider}: {', '.join(missing)}"}
            )

        attrs["credentials"] = credentials
        return attrs


class DestinationTestSerializer(serializers.Serializer):
    """Connection test for credentials that have not been saved."""

    provider = serializers.ChoiceField(choices=BackupDestination.PROVIDER_CHOICES)
    credentials = CredentialsField(required=False, default=dict)

    def validate(self, attrs):
        attrs["credentials"] = clean_credentials(attrs["provider"], attrs["credentials"])
        return attrs


class SavedDestinationTestSerializer(serializers.Serializer):
    """Connection test for a saved destination, optionally with edited credentials."""

    credentials = CredentialsField(required=False, default=dict)


class RestoreRequestSerializer(serializers.Serializer):
    """Provider credentials supplied by the setup wizard."""

    provider = serializers.ChoiceField(choices=BackupDestination.PROVIDER_CHOICES)
    credentials = CredentialsField(required=False, default=dict)


class RestoreExecuteSerializer(RestoreRequestSerializer):
    backup_key = serializers.CharField(max_length=1024)


class GoogleClientSerializer(serializers.Serializer):
    client_id = serializers.CharField()
    client_secret = serializers.CharField()


class BackupUploadSerializer(serializers.ModelSerializer):
    """Serializer for an upload nested in backup history."""

    destination_name = serializers.CharField(source="destination.name", read_only=True)
    destination_provider = serializers.CharField(source="destination.provider", read_only=True)

    class Meta:
        model = BackupUpload
        fields = [
            "id",
            "destination",
            "destination_name",
            "destination_provider",
            "status",
            "error_message",
            "started_at",
            "completed_at",
        ]


class BackupSerializer(serializers.ModelSerializer):
    """Serializer for backup history."""

    uploads = BackupUploadSerializer(many=True, read_only=True)
    size_mb = serializers.SerializerMethodField()
    user_name = serializers.CharField(source="user.username", read_only=True, allow_null=True)

    class Meta:
        model = Backup
        fields = [
            "id",
            "provider",
            "status",
            "file_name",
            "file_size",
            "size_mb",
            "error_message",
            "triggered_by",
            "user",
            "user_name",
            "started_at",
            "completed_at",
            "created_at",
            "uploads",
        ]

    def get_size_mb(self, obj):
        return obj.get_size_mb()


class BackupSettingsSerializer(serializers.Serializer):
    """Schedule and retention settings."""

    schedule = serializers.ChoiceField(choices=SCHEDULE_CHOICES, required=False)
    retention_days = serializers.IntegerField(min_value=1, max_value=3650, required=False)
