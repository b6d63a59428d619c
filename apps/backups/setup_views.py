"""
Restore-from-backup views for the setup wizard.

These run before any user exists, so they are unauthenticated and gated on
setup being incomplete. Credentials come from the request and are never
stored.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.setup import SetupGateMixin

from .restore import RestoreService
from .serializers import RestoreExecuteSerializer, RestoreRequestSerializer
from .views import BackupErrorMixin

logger = logging.getLogger(__name__)


class SetupRestoreView(SetupGateMixin, BackupErrorMixin, APIView):
    serializer_class = RestoreRequestSerializer

    def get_validated_data(self, request):
        serializer = self.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data


class RestoreTestConnectionView(SetupRestoreView):
    """Test provider credentials entered in the wizard."""

    def post(self, request):
        data = self.get_validated_data(request)
        return Response(RestoreService.test_connection(data["provider"], data["credentials"]))


class RestoreListView(SetupRestoreView):
    """List the archives available at the provider, newest first."""

    def post(self, request):
        data = self.get_validated_data(request)
        return Response(RestoreService.list_backups(data["provider"], data["credentials"]))


class RestoreExecuteView(SetupRestoreView):
    """
    Restore the install from the selected archive and finish setup.

    Runs synchronously; the response is sent once the restore has finished.
    """

    serializer_class = RestoreExecuteSerializer

    def post(self, request):
        data = self.get_validated_data(request)
        logger.warning(f"Setup restore requested for {data['backup_key']} from {data['provider']}")
        result = RestoreService.execute(data["provider"], data["backup_key"], data["credentials"])
        return Response(result, status=status.HTTP_200_OK)
