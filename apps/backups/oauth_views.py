"""
Views for linking a Google Drive destination.

- GoogleDriveAuthorizeView: staff, uses the stored OAuth client
- GoogleDriveSetupAuthorizeView: setup wizard, client supplied in the request
- google_drive_callback: Google's redirect target
"""

import logging

from django.http import HttpResponse, HttpResponseRedirect
from django.views.decorators.cache import never_cache
from django.views.decorators.http import require_GET

from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.setup import AppConfiguration, SetupGateMixin

from .exceptions import BackupError, InvalidCredentialsError, OAuthStateError
from .oauth import (
    GENERIC_ERROR_MESSAGE,
    build_authorization_url,
    clear_state_cookie,
    exchange_code,
    fetch_user_email,
    generate_state,
    read_state_cookie,
    render_error_page,
    render_success_page,
    set_state_cookie,
)
from .serializers import GoogleClientSerializer

logger = logging.getLogger(__name__)


class GoogleDriveAuthorizeView(APIView):
    """
    Redirect a staff user to Google's consent screen.
    """

    permission_classes = [IsAdminUser]

    def get(self, request):
        config = AppConfiguration.load()
        if not (config.google_client_id and config.google_client_secret):
            return Response(
                {"error": "Google OAuth not configured"}, status=status.HTTP_400_BAD_REQUEST
            )

        state = generate_state()
        response = HttpResponseRedirect(build_authorization_url(config.google_client_id, state))
        set_state_cookie(response, state)
        return response


class GoogleDriveSetupAuthorizeView(SetupGateMixin, APIView):
    """
    Start linking during initial setup, before any OAuth client is stored.

    Returns the consent URL instead of redirecting so the wizard can open it
    in a popup.
    """

    def post(self, request):
        serializer = GoogleClientSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {"error": "Client ID and Client Secret are required"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        client_id = serializer.validated_data["client_id"]
        client_secret = serializer.validated_data["client_secret"]
        state = generate_state()

        response = Response({"url": build_authorization_url(client_id, state)})
        set_state_cookie(response, state, client_id=client_id, client_secret=client_secret)
        return response


def _client_credentials(state_payload):
    client_id = state_payload.get("client_id")
    client_secret = state_payload.get("client_secret")
    if client_id and client_secret:
        return client_id, client_secret

    config = AppConfiguration.load()
    if not (config.google_client_id and config.google_client_secret):
        raise InvalidCredentialsError("Google OAuth not configured")
    return config.google_client_id, config.google_client_secret


def _callback_page(request) -> str:
    if request.GET.get("error"):
        return render_error_page("Google authorization was denied.")

    code = request.GET.get("code")
    state = request.GET.get("state")
    if not code or not state:
        return render_error_page("Missing authorization code.")

    try:
        state_payload = read_state_cookie(request, state)
    except OAuthStateError as e:
        logger.warning(f"Rejected Google Drive callback: {e}")
        return render_error_page(GENERIC_ERROR_MESSAGE)

    try:
        client_id, client_secret = _client_credentials(state_payload)
        tokens = exchange_code(code, client_id, client_secret)
    except BackupError as e:
        logger.error(f"Google Drive linking failed: {e}")
        return render_error_page(str(e))

    email = fetch_user_email(tokens.get("access_token"))
    logger.info(f"Google Drive account linked{f' ({email})' if email else ''}")
    return render_success_page(tokens["refresh_token"], email)


@never_cache
@require_GET
def google_drive_callback(request):
    """
    Complete linking and pass the refresh token back to the opener window.

    The state cookie is single-use and cleared on every response.
    """
    response = HttpResponse(_callback_page(request), content_type="text/html; charset=utf-8")
    clear_state_cookie(response)
    return response
