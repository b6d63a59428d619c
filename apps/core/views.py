"""
Setup views for a fresh install.

The restore-from-backup path of the setup wizard lives in
apps.backups.setup_views.
"""

import logging

from django.contrib.auth import get_user_model
from django.db import transaction

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import AppSetting
from .serializers import FreshSetupSerializer
from .setup import COMPANY_NAME_KEY, SetupGateMixin, mark_setup_complete, resolve_setup_status

logger = logging.getLogger(__name__)


class SetupStatusView(APIView):
    """
    Report whether initial setup has been completed.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"complete": resolve_setup_status()})


class FreshSetupView(SetupGateMixin, APIView):
    """
    Create the first administrator and finish setup without a restore.
    """

    def post(self, request):
        serializer = FreshSetupSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        with transaction.atomic():
            user = get_user_model().objects.create_superuser(
                username=data["email"],
                email=data["email"],
                password=data["password"],
                first_name=data["name"],
            )
            if data.get("company_name"):
                AppSetting.set_value(COMPANY_NAME_KEY, data["company_name"], user=user)
            mark_setup_complete(user=user)

        logger.info(f"Fresh setup completed, created administrator {user.username}")
        return Response({"success": True}, status=status.HTTP_201_CREATED)
