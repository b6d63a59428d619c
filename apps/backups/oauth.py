"""
Google Drive OAuth linking.

Linking obtains a refresh token for a Google Drive destination. The browser is
sent to Google's consent screen and comes back to the callback endpoint, which
exchanges the code and hands the refresh token to the opener window through
localStorage. Nothing is persisted server-side; the token is stored only when
the destination form is saved.

A random state value is kept in a signed, short-lived, HTTP-only cookie and
compared with the state Google echoes back. During initial setup the OAuth
client ID and secret are not stored yet, so they travel in the same cookie.
"""

import json
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from django.conf import settings
from django.core import signing
from django.utils.html import escape, escapejs

import requests

from .exceptions import OAuthExchangeError, OAuthStateError
from .storage import GOOGLE_TOKEN_URI

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
OAUTH_SCOPES = "https://www.googleapis.com/auth/drive.file email"

CALLBACK_PATH = "/api/backup/gdrive/callback"
STATE_COOKIE_NAME = "gdrive_state"
STATE_COOKIE_SALT = "apps.backups.oauth.state"
STATE_MAX_AGE = 10 * 60

RESULT_STORAGE_KEY = "gdrive-auth-result"
GENERIC_ERROR_MESSAGE = "Authorization failed. Please try again."

REQUEST_TIMEOUT = 30


def get_redirect_uri() -> str:
    return f"{settings.SITE_URL.rstrip('/')}{CALLBACK_PATH}"


def generate_state() -> str:
    return secrets.token_hex(32)


def build_authorization_url(client_id: str, state: str) -> str:
    """Return Google's consent URL for an offline drive.file grant."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": get_redirect_uri(),
        "scope": OAUTH_SCOPES,
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def set_state_cookie(
    response,
    state: str,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
) -> None:
    payload = {"state": state}
    if client_id and client_secret:
        payload["client_id"] = client_id
        payload["client_secret"] = client_secret

    response.set_signed_cookie(
        STATE_COOKIE_NAME,
        json.dumps(payload),
        salt=STATE_COOKIE_SALT,
        max_age=STATE_MAX_AGE,
        httponly=True,
        samesite="Lax",
        secure=not settings.DEBUG,
        path="/",
    )


def clear_state_cookie(response) -> None:
    response.delete_cookie(STATE_COOKIE_NAME, path="/", samesite="Lax")


def read_state_cookie(request, returned_state: Optional[str]) -> Dict[str, Any]:
    """
    Validate the state cookie against the state Google returned.

    Returns:
        The cookie payload: "state" and, for setup-time linking, the client
        credentials

    Raises:
        OAuthStateError: If the cookie is missing, tampered with, expired,
            malformed, or its state does not match
    """
    try:
        raw = request.get_signed_cookie(
            STATE_COOKIE_NAME, salt=STATE_COOKIE_SALT, max_age=STATE_MAX_AGE
        )
    except KeyError as e:
        raise OAuthStateError("State cookie is missing") from e
    except signing.BadSignature as e:
        raise OAuthStateError("State cookie is invalid or expired") from e

    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise OAuthStateError("State cookie is malformed") from e

    if not isinstance(payload, dict) or not isinstance(payload.get("state"), str):
        raise OAuthStateError("State cookie is malformed")

    if not returned_state or not secrets.compare_digest(payload["state"], str(returned_state)):
        raise OAuthStateError("State does not match")

    return payload


def exchange_code(code: str, client_id: str, client_secret: str) -> Dict[str, Any]:
    """
    Exchange an authorization code for tokens.

    Returns:
        Google's token response; always contains "refresh_token"

    Raises:
        OAuthExchangeError: If the request fails or no refresh token is returned
    """
    try:
        response = requests.post(
            GOOGLE_TOKEN_URI,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": get_redirect_uri(),
                "grant_type": "authorization_code",
            },
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise OAuthExchangeError(f"Token request failed: {e}") from e

    try:
        tokens = response.json()
    except ValueError:
        tokens = {}

    if not response.ok:
        message = tokens.get("error_description") or tokens.get("error") or response.reason
        raise OAuthExchangeError(f"Token exchange failed: {message}")

    if not tokens.get("refresh_token"):
        raise OAuthExchangeError("Google did not return a refresh token")

    return tokens


def fetch_user_email(access_token: Optional[str]) -> str:
    """Email of the linked Google account, or "" when it cannot be fetched."""
    if not access_token:
        return ""
    try:
        response = requests.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json().get("email", "") or ""
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Could not fetch Google account email: {e}")
        return ""


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html><head><title>{title}</title>
<style>
  body {{ font-family: system-ui, sans-serif; display: flex; align-items: center; justify-content: center; min-height: 100vh; margin: 0; background: #f9fafb; }}
  .card {{ background: white; border-radius: 12px; padding: 32px; box-shadow: 0 1px 3px rgba(0,0,0,0.1); max-width: 400px; text-align: center; }}
  h2 {{ margin: 0 0 8px; font-size: 18px; color: {color}; }}
  p {{ color: #6b7280; margin: 0 0 16px; }}
  button {{ background: #374151; color: white; border: none; border-radius: 8px; padding: 10px 20px; cursor: pointer; font-size: 14px; }}
</style></head>
<body>
<div class="card">
  <h2>{heading}</h2>
  <p>{message}</p>
  <button onclick="window.close()">Close</button>
</div>
<script>
  try {{
    localStorage.setItem("{storage_key}", JSON.stringify({result}));
  }} catch (e) {{}}
  {close_script}
</script>
</body></html>"""


def render_success_page(refresh_token: str, email: str) -> str:
    result = (
        f'{{type: "gdrive-linked", refreshToken: "{escapejs(refresh_token)}", '
        f'email: "{escapejs(email)}"}}'
    )
    return _PAGE_TEMPLATE.format(
        title="Google Drive Linked",
        color="#059669",
        heading="Google Drive Linked",
        message="You can close this window.",
        storage_key=RESULT_STORAGE_KEY,
        result=result,
        close_script="setTimeout(function () { window.close(); }, 1500);",
    )


def render_error_page(message: str) -> str:
    result = f'{{type: "gdrive-error", message: "{escapejs(message)}"}}'
    return _PAGE_TEMPLATE.format(
        title="Google Drive Error",
        color="#dc2626",
        heading="Link Failed",
        message=escape(message),
        storage_key=RESULT_STORAGE_KEY,
        result=result,
        close_script="",
    )
