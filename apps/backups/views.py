"""
API views for backup management.

This module contains views for:
- Backup schedule and retention settings
- Manual backup triggers, history and statistics
- Backup destinations (masked reads, merged updates, connection tests)
"""

import logging

from django.shortcuts import get_object_or_404

from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.setup import AppConfiguration

from .credentials import has_masked_values, merge_credentials
from .exceptions import BackupError
from .models import Backup, BackupDestination
from .serializers import (
    BackupDestinationSerializer,
    BackupSerializer,
    BackupSettingsSerializer,
    DestinationTestSerializer,
    SavedDestinationTestSerializer,
)
from .services import BackupService
from .storage import get_storage_backend

logger = logging.getLogger(__name__)


class BackupErrorMixin:
    """Render BackupError subclasses as {"error": message} with their status code."""

    def handle_exception(self, exc):
        if isinstance(exc, BackupError):
            return Response({"error": str(exc)}, status=exc.status_code)
        return super().handle_exception(exc)


class BackupAPIView(BackupErrorMixin, APIView):
    """Base view for the staff-only backup API."""

    permission_classes = [IsAdminUser]


class BackupSettingsView(BackupAPIView):
    """
    Get or update the backup schedule and retention.

    Saving a schedule re-syncs the recurring job.
    """

    def get(self, request):
        config = AppConfiguration.load()
        return Response({"schedule": config.schedule, "retention_days": config.retention_days})

    def put(self, request):
        serializer = BackupSettingsSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        result = BackupService.update_settings(user=request.user, **serializer.validated_data)
        logger.info(f"Backup settings updated by {request.user.username}: {result}")
        return Response(result)


class BackupCreateView(BackupAPIView):
    """Trigger a manual backup to every active destination."""

    def post(self, request):
        result = BackupService.trigger_manual_backup(user=request.user)
        return Response(result, status=status.HTTP_202_ACCEPTED)


class BackupHistoryView(BackupAPIView):
    """Most recent backups, newest first, with per-destination upload status."""

    def get(self, request):
        backups = BackupService.get_history()
        return Response(BackupSerializer(backups, many=True).data)


class BackupStatsView(BackupAPIView):
    def get(self, request):
        return Response(BackupService.get_backup_statistics())


class BackupDetailView(BackupAPIView):
    """Delete a backup and, best effort, its archive at every destination."""

    def delete(self, request, pk):
        try:
            BackupService.delete_backup(pk)
        except Backup.DoesNotExist:
            return Response({"error": "Backup not found"}, status=status.HTTP_404_NOT_FOUND)

        logger.info(f"Backup {pk} deleted by {request.user.username}")
        return Response(status=status.HTTP_204_NO_CONTENT)


class DestinationListCreateView(BackupErrorMixin, generics.ListCreateAPIView):
    """List or create backup destinations."""

    serializer_class = BackupDestinationSerializer
    permission_classes = [IsAdminUser]
    queryset = BackupDestination.objects.all()

    def perform_create(self, serializer):
        destination = serializer.save()
        logger.info(
            f"Backup destination {destination.name} ({destination.provider}) "
            f"created by {self.request.user.username}"
        )


class DestinationDetailView(BackupErrorMixin, generics.RetrieveUpdateDestroyAPIView):
    """
    Get, update or delete a backup destination.

    Deleting a destination also deletes its upload records.
    """

    serializer_class = BackupDestinationSerializer
    permission_classes = [IsAdminUser]
    queryset = BackupDestination.objects.all()

    def perform_update(self, serializer):
        destination = serializer.save()
        logger.info(f"Backup destination {destination.name} updated by {self.request.user.username}")

    def perform_destroy(self, instance):
        logger.info(f"Backup destination {instance.name} deleted by {self.request.user.username}")
        instance.delete()


class DestinationToggleView(BackupAPIView):
    """Flip a destination between active and inactive."""

    def post(self, request, pk):
        destination = get_object_or_404(BackupDestination, pk=pk)
        destination.is_active = not destination.is_active
        destination.save(update_fields=["is_active", "updated_at"])

        logger.info(
            f"Backup destination {destination.name} "
            f"{'activated' if destination.is_active else 'deactivated'}"
        )
        return Response(BackupDestinationSerializer(destination).data)


def _test_connection(provider, credentials, config=None):
    try:
        storage = get_storage_backend(provider, credentials, config=config)
    except BackupError as e:
        return {"success": False, "message": str(e)}
    return storage.test_connection()


class DestinationTestView(BackupAPIView):
    """
    Test a saved destination.

    Credentials in the body are the edit form's current values; masked
    values fall back to the stored secrets.
    """

    def post(self, request, pk):
        destination = get_object_or_404(BackupDestination, pk=pk)

        serializer = SavedDestinationTestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        credentials = merge_credentials(
            destination.credentials, serializer.validated_data["credentials"], destination.provider
        )
        return Response(_test_connection(destination.provider, credentials))


class DestinationConnectionTestView(BackupAPIView):
    """Test credentials that have not been saved yet."""

    def post(self, request):
        serializer = DestinationTestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        credentials = serializer.validated_data["credentials"]
        if has_masked_values(credentials):
            return Response(
                {"success": False, "message": "Masked values must be re-entered before testing"}
            )
        return Response(_test_connection(serializer.validated_data["provider"], credentials))
