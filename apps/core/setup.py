"""
Application configuration aggregate and the initial-setup gate.

``AppConfiguration`` reads the flat settings table once and exposes typed
accessors, so an operation works against one consistent snapshot instead of
issuing a lookup per key. The setup gate guards the unauthenticated endpoints
that only make sense on a fresh install.
"""

import logging

from django.conf import settings
from django.contrib.auth import get_user_model

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from apps.backups.exceptions import SetupAlreadyCompletedError

from .models import AppSetting

logger = logging.getLogger(__name__)

SETUP_COMPLETE_KEY = "setup_complete"
COMPANY_NAME_KEY = "company_name"
BACKUP_SCHEDULE_KEY = "backup_schedule"
BACKUP_RETENTION_DAYS_KEY = "backup_retention_days"
GOOGLE_CLIENT_ID_KEY = "google_client_id"
GOOGLE_CLIENT_SECRET_KEY = "google_client_secret"

DEFAULT_SCHEDULE = "none"
DEFAULT_RETENTION_DAYS = 30


class AppConfiguration:
    """Snapshot of the app_settings table."""

    def __init__(self, values=None):
        self._values = dict(values or {})

    @classmethod
    def load(cls):
        return cls(AppSetting.load())

    def get(self, key, default=""):
        value = self._values.get(key)
        if value is None or value == "":
            return default
        return value

    @property
    def schedule(self):
        return self.get(BACKUP_SCHEDULE_KEY, DEFAULT_SCHEDULE)

    @property
    def retention_days(self):
        try:
            return int(self.get(BACKUP_RETENTION_DAYS_KEY, DEFAULT_RETENTION_DAYS))
        except (TypeError, ValueError):
            return DEFAULT_RETENTION_DAYS

    @property
    def setup_complete(self):
        return self.get(SETUP_COMPLETE_KEY) == "true"

    @property
    def google_client_id(self):
        return self.get(GOOGLE_CLIENT_ID_KEY, settings.GOOGLE_OAUTH_CLIENT_ID)

    @property
    def google_client_secret(self):
        return self.get(GOOGLE_CLIENT_SECRET_KEY, settings.GOOGLE_OAUTH_CLIENT_SECRET)

    @property
    def company_name(self):
        return self.get(COMPANY_NAME_KEY)


def is_setup_complete():
    return AppSetting.get_value(SETUP_COMPLETE_KEY) == "true"


def ensure_setup_incomplete():
    """Raise SetupAlreadyCompletedError once initial setup has finished."""
    if is_setup_complete():
        raise SetupAlreadyCompletedError()


def mark_setup_complete(user=None):
    AppSetting.set_value(SETUP_COMPLETE_KEY, "true", user=user)
    logger.info("Initial setup marked complete")


def resolve_setup_status():
    """
    Return whether initial setup is complete, recording the answer.

    Installs that predate the setup flag have users but no flag; those are
    treated as complete. An install with no users at all is a fresh install.
    """
    value = AppSetting.objects.filter(key=SETUP_COMPLETE_KEY).values_list("value", flat=True)
    if value:
        return value[0] == "true"

    if get_user_model().objects.exists():
        logger.info("Users exist without a setup flag, marking setup complete")
        AppSetting.set_value(SETUP_COMPLETE_KEY, "true")
        return True

    AppSetting.set_value(SETUP_COMPLETE_KEY, "false")
    return False


class SetupGateMixin:
    """
    Mixin for setup-time API views.

    The views are unauthenticated (no user exists yet on a fresh install) and
    every request is rejected with the same 403 body once setup is complete,
    whichever endpoint was called.
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        ensure_setup_incomplete()

    def handle_exception(self, exc):
        if isinstance(exc, SetupAlreadyCompletedError):
            return Response({"error": str(exc)}, status=status.HTTP_403_FORBIDDEN)
        return super().handle_exception(exc)
