"""
Credential store for backup destinations.

Secrets never leave the server after they are first entered:
- every read passes credentials through mask_credentials, which replaces each
  non-empty sensitive field with MASK_SENTINEL
- every write passes through merge_credentials, which keeps the stored secret
  when the sentinel is echoed back unchanged

The per-provider field lists come from the storage backend classes, so a new
provider only has to declare its fields in apps.backups.storage.

Also hosts the one-shot migration of the legacy flat backup settings into a
BackupDestination row.
"""

import logging
from typing import Any, Dict, Optional

from django.db import transaction

from apps.core.setup import AppConfiguration

from .models import BackupDestination
from .storage import STORAGE_BACKENDS, get_backend_class

logger = logging.getLogger(__name__)

MASK_SENTINEL = "********"

PROVIDER_FIELDS = {
    provider: backend.recognized_fields() for provider, backend in STORAGE_BACKENDS.items()
}
REQUIRED_FIELDS = {
    provider: list(backend.required_fields) for provider, backend in STORAGE_BACKENDS.items()
}
OPTIONAL_FIELDS = {
    provider: list(backend.optional_fields) for provider, backend in STORAGE_BACKENDS.items()
}
SENSITIVE_FIELDS = {
    provider: list(backend.sensitive_fields) for provider, backend in STORAGE_BACKENDS.items()
}

# Legacy flat settings (app_settings keys) that predate BackupDestination rows
LEGACY_PROVIDER_KEY = "backup_provider"
LEGACY_ENABLED_KEY = "backup_enabled"
LEGACY_FIELD_MAP = {
    "s3": {
        "access_key_id": "backup_s3_access_key",
        "secret_access_key": "backup_s3_secret_key",
        "bucket": "backup_s3_bucket",
        "region": "backup_s3_region",
        "endpoint": "backup_s3_endpoint",
    },
    "b2": {
        "key_id": "backup_b2_key_id",
        "application_key": "backup_b2_app_key",
        "bucket": "backup_b2_bucket",
        "endpoint": "backup_b2_endpoint",
    },
    "gdrive": {
        "refresh_token": "backup_gdrive_refresh_token",
        "folder_id": "backup_gdrive_folder_id",
    },
}
LEGACY_KEYS = [LEGACY_PROVIDER_KEY, LEGACY_ENABLED_KEY] + [
    key for fields in LEGACY_FIELD_MAP.values() for key in fields.values()
]


def mask_credentials(provider: str, credentials: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return a copy of ``credentials`` with non-empty sensitive values masked."""
    sensitive = SENSITIVE_FIELDS.get(provider, [])
    masked = {}
    for key, value in (credentials or {}).items():
        masked[key] = MASK_SENTINEL if key in sensitive and value else value
    return masked


def clean_credentials(provider: str, credentials: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Keep only the fields the provider recognises.

    Raises:
        UnsupportedProviderError: If the provider is unknown
    """
    backend_class = get_backend_class(provider)
    credentials = credentials or {}
    cleaned = {}
    for field in backend_class.recognized_fields():
        if field in credentials:
            value = credentials[field]
            cleaned[field] = "" if value is None else str(value).strip()
    return cleaned


def merge_credentials(
    existing: Optional[Dict[str, Any]], incoming: Optional[Dict[str, Any]], provider: str
) -> Dict[str, str]:
    """
    Merge submitted credentials into the stored ones.

    A sensitive field submitted as MASK_SENTINEL keeps its stored value; any
    other submitted value replaces it. Fields missing from the submission keep
    their stored value. Unrecognised keys are dropped.
    """
    existing = clean_credentials(provider, existing)
    incoming = clean_credentials(provider, incoming)
    sensitive = SENSITIVE_FIELDS.get(provider, [])

    merged = dict(existing)
    for field, value in incoming.items():
        if field in sensitive and value == MASK_SENTINEL:
            continue
        merged[field] = value
    return merged


def has_masked_values(credentials: Optional[Dict[str, Any]]) -> bool:
    return any(value == MASK_SENTINEL for value in (credentials or {}).values())


def migrate_legacy_settings(config: Optional[AppConfiguration] = None):
    """
    Create one BackupDestination from the legacy flat backup settings.

    Does nothing once any destination exists, so running it repeatedly yields
    at most one synthesized destination.

    Returns:
        The created BackupDestination, or None when nothing was migrated
    """
    with transaction.atomic():
        if BackupDestination.objects.exists():
            logger.debug("Backup destinations already exist, skipping legacy migration")
            return None

        config = config or AppConfiguration.load()
        provider = config.get(LEGACY_PROVIDER_KEY)
        field_map = LEGACY_FIELD_MAP.get(provider)
        if field_map is None:
            if provider and provider != "none":
                logger.warning(f"Unknown legacy backup provider '{provider}', nothing migrated")
            return None

        credentials = {field: config.get(key) for field, key in field_map.items()}
        if not any(credentials.values()):
            logger.info(f"Legacy {provider} backup settings are empty, nothing migrated")
            return None

        destination = BackupDestination.objects.create(
            name=STORAGE_BACKENDS[provider].display_name,
            provider=provider,
            credentials=clean_credentials(provider, credentials),
            is_active=config.get(LEGACY_ENABLED_KEY, "true") != "false",
        )

    logger.info(f"Migrated legacy {provider} backup settings to destination {destination.id}")
    return destination
