"""
Storage backends for the backup system.

This module provides the storage providers a backup destination can use:
1. S3CompatibleStorage - AWS S3 or any S3-compatible service (custom endpoint)
2. BackblazeB2Storage - Backblaze B2 through its S3-compatible API
3. GoogleDriveStorage - a Google Drive folder, authorized with an OAuth refresh token

All backends implement a common interface with test_connection, list, upload,
download, and delete methods. Operational failures raise StorageError;
test_connection never raises and reports failures in its result instead.
"""

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload

from .exceptions import InvalidCredentialsError, StorageError, UnsupportedProviderError

logger = logging.getLogger(__name__)

# Every archive is stored under this prefix
BACKUP_PREFIX = "backups/"

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.file"]

B2_ENDPOINT_PATTERN = re.compile(r"s3\.([a-z0-9-]+)\.backblazeb2\.com", re.IGNORECASE)


class StorageBackend:
    """
    Base class for storage backends.

    Subclasses declare the credential fields they understand. The credential
    store builds its per-provider field lists from these declarations.
    """

    provider = ""
    display_name = ""
    required_fields: List[str] = []
    optional_fields: List[str] = []
    sensitive_fields: List[str] = []

    @classmethod
    def recognized_fields(cls) -> List[str]:
        return list(cls.required_fields) + list(cls.optional_fields)

    @classmethod
    def from_credentials(cls, credentials: Dict[str, Any], config=None) -> "StorageBackend":
        raise NotImplementedError

    def test_connection(self) -> Dict[str, Any]:
        """
        Check that the backend is reachable with the configured credentials.

        Returns:
            Dictionary with "success" (bool) and "message" (str)
        """
        raise NotImplementedError

    def list(self) -> List[Dict[str, Any]]:
        """
        List backup archives stored in the backend.

        Returns:
            List of dictionaries with "key", "size" and "last_modified"
        """
        raise NotImplementedError

    def upload(self, local_path: str, remote_key: str) -> None:
        """
        Upload a file, replacing any existing object with the same key.

        Args:
            local_path: Path to the local file to upload
            remote_key: Destination key in the storage backend
        """
        raise NotImplementedError

    def download(self, remote_key: str, local_path: str) -> None:
        """
        Download a file to local disk.

        Args:
            remote_key: Key of the file in the storage backend
            local_path: Destination path for the downloaded file
        """
        raise NotImplementedError

    def delete(self, remote_key: str) -> None:
        """
        Delete a file from the storage backend.

        Args:
            remote_key: Key of the file to delete
        """
        raise NotImplementedError


class S3CompatibleStorage(StorageBackend):
    """
    S3-compatible object storage backend.

    Works against AWS S3 by default. When a custom endpoint is configured
    (MinIO, Wasabi, Cloudflare R2, ...) the client uses path-style addressing.
    """

    provider = "s3"
    display_name = "S3-Compatible Storage"
    required_fields = ["access_key_id", "secret_access_key", "bucket"]
    optional_fields = ["region", "endpoint"]
    sensitive_fields = ["secret_access_key"]

    def __init__(
        self,
        bucket_name: str,
        access_key_id: str,
        secret_access_key: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
    ):
        """
        Initialize the S3 storage backend.

        Args:
            bucket_name: Bucket holding the backups
            access_key_id: Access key ID
            secret_access_key: Secret access key
            region: Bucket region (defaults to us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
        """
        self.bucket_name = bucket_name
        self.region = region or "us-east-1"
        self.endpoint_url = endpoint_url or None

        client_config = Config(s3={"addressing_style": "path"}) if self.endpoint_url else None

        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name=self.region,
            config=client_config,
        )

        logger.debug(
            f"{self.__class__.__name__} initialized with bucket: {self.bucket_name}, "
            f"region: {self.region}"
        )

    @classmethod
    def from_credentials(cls, credentials, config=None):
        return cls(
            bucket_name=credentials["bucket"],
            access_key_id=credentials["access_key_id"],
            secret_access_key=credentials["secret_access_key"],
            region=credentials.get("region") or "us-east-1",
            endpoint_url=normalize_endpoint(credentials.get("endpoint")),
        )

    def _name(self):
        return self.__class__.__name__

    def test_connection(self):
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
            return {
                "success": True,
                "message": f'Successfully connected to bucket "{self.bucket_name}"',
            }
        except ClientError as e:
            logger.warning(f"{self._name()}: Connection test failed for {self.bucket_name}: {e}")
            return {"success": False, "message": str(e)}
        except Exception as e:
            logger.warning(f"{self._name()}: Connection test failed for {self.bucket_name}: {e}")
            return {"success": False, "message": str(e) or "Failed to connect to bucket"}

    def list(self):
        items = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=BACKUP_PREFIX):
                for obj in page.get("Contents", []):
                    items.append(
                        {
                            "key": obj["Key"],
                            "size": obj.get("Size", 0),
                            "last_modified": obj.get("LastModified") or timezone.now(),
                        }
                    )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"{self._name()}: Failed to list {self.bucket_name}: {e}")
            raise StorageError(f"Failed to list bucket {self.bucket_name}: {e}") from e

        return items

    def upload(self, local_path, remote_key):
        try:
            with open(local_path, "rb") as file:
                self.client.upload_fileobj(
                    file,
                    self.bucket_name,
                    remote_key,
                    ExtraArgs={
                        "Metadata": {
                            "uploaded-from": "studio-backup-system",
                        }
                    },
                )
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error(f"{self._name()}: Failed to upload {local_path} to {remote_key}: {e}")
            raise StorageError(f"Failed to upload {remote_key}: {e}") from e

        logger.info(f"{self._name()}: Uploaded {local_path} to {remote_key}")

    def download(self, remote_key, local_path):
        try:
            # Create parent directories if they don't exist
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)

            with open(local_path, "wb") as file:
                self.client.download_fileobj(self.bucket_name, remote_key, file)
        except (BotoCoreError, ClientError, OSError) as e:
            logger.error(f"{self._name()}: Failed to download {remote_key} to {local_path}: {e}")
            raise StorageError(f"Failed to download {remote_key}: {e}") from e

        logger.info(f"{self._name()}: Downloaded {remote_key} to {local_path}")

    def delete(self, remote_key):
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=remote_key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"{self._name()}: Failed to delete {remote_key}: {e}")
            raise StorageError(f"Failed to delete {remote_key}: {e}") from e

        logger.info(f"{self._name()}: Deleted {remote_key}")


class BackblazeB2Storage(S3CompatibleStorage):
    """
    Backblaze B2 object storage backend.

    B2 is reached through its S3-compatible API. The region is taken from the
    endpoint host (https://s3.<region>.backblazeb2.com), falling back to "auto".
    """

    provider = "b2"
    display_name = "Backblaze B2"
    required_fields = ["key_id", "application_key", "bucket", "endpoint"]
    optional_fields = []
    sensitive_fields = ["application_key"]

    @classmethod
    def from_credentials(cls, credentials, config=None):
        endpoint_url = normalize_endpoint(credentials["endpoint"])
        return cls(
            bucket_name=credentials["bucket"],
            access_key_id=credentials["key_id"],
            secret_access_key=credentials["application_key"],
            region=b2_region_from_endpoint(endpoint_url),
            endpoint_url=endpoint_url,
        )


class GoogleDriveStorage(StorageBackend):
    """
    Google Drive storage backend.

    Archives are stored as files in one Drive folder, named after the last
    path component of the remote key. Access is authorized with an OAuth
    refresh token obtained through the linking flow in apps.backups.oauth;
    the short-lived access token is cached on the instance and only refreshed
    when it is missing or expired.
    """

    provider = "gdrive"
    display_name = "Google Drive"
    required_fields = ["refresh_token", "folder_id"]
    # Setup-time callers pass the OAuth client directly, since no settings exist yet
    optional_fields = ["client_id", "client_secret"]
    sensitive_fields = ["refresh_token", "client_secret"]

    def __init__(self, refresh_token: str, folder_id: str, client_id: str, client_secret: str):
        """
        Initialize the Google Drive storage backend.

        Args:
            refresh_token: OAuth refresh token with the drive.file scope
            folder_id: ID of the Drive folder holding the backups
            client_id: OAuth client ID the refresh token was issued to
            client_secret: OAuth client secret
        """
        self.folder_id = folder_id
        self.credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=client_id,
            client_secret=client_secret,
            scopes=GOOGLE_DRIVE_SCOPES,
        )
        self._service = None

        logger.debug(f"GoogleDriveStorage initialized with folder: {self.folder_id}")

    @classmethod
    def from_credentials(cls, credentials, config=None):
        client_id = credentials.get("client_id")
        client_secret = credentials.get("client_secret")

        if not (client_id and client_secret):
            if config is None:
                from apps.core.setup import AppConfiguration

                config = AppConfiguration.load()
            client_id = client_id or config.google_client_id
            client_secret = client_secret or config.google_client_secret

        if not (client_id and client_secret):
            raise InvalidCredentialsError("Google OAuth client ID and secret are not configured")

        return cls(
            refresh_token=credentials["refresh_token"],
            folder_id=credentials["folder_id"],
            client_id=client_id,
            client_secret=client_secret,
        )

    def _get_service(self):
        """Return the Drive API client, refreshing the access token if needed."""
        if not self.credentials.valid:
            self.credentials.refresh(Request())
            logger.debug("GoogleDriveStorage: Refreshed access token")

        if self._service is None:
            self._service = build(
                "drive", "v3", credentials=self.credentials, cache_discovery=False
            )
        return self._service

    def _find_file_id(self, name: str) -> Optional[str]:
        response = (
            self._get_service()
            .files()
            .list(
                q=(
                    f"'{self.folder_id}' in parents and name = '{_quote(name)}' "
                    "and trashed = false"
                ),
                fields="files(id)",
                pageSize=1,
            )
            .execute()
        )
        files = response.get("files", [])
        return files[0]["id"] if files else None

    def test_connection(self):
        try:
            self._get_service().files().list(
                q=f"'{self.folder_id}' in parents and trashed = false",
                pageSize=1,
                fields="files(id)",
            ).execute()
            return {"success": True, "message": "Successfully connected to Google Drive folder"}
        except Exception as e:
            logger.warning(f"GoogleDriveStorage: Connection test failed: {e}")
            return {"success": False, "message": str(e) or "Failed to connect to Google Drive"}

    def list(self):
        items = []
        page_token = None
        try:
            while True:
                response = (
                    self._get_service()
                    .files()
                    .list(
                        q=(
                            f"'{self.folder_id}' in parents and name contains 'backup-' "
                            "and trashed = false"
                        ),
                        fields="nextPageToken, files(id, name, size, modifiedTime)",
                        orderBy="modifiedTime desc",
                        pageToken=page_token,
                    )
                    .execute()
                )
                for file in response.get("files", []):
                    items.append(
                        {
                            "key": file.get("name", ""),
                            "size": int(file.get("size") or 0),
                            "last_modified": parse_datetime(file.get("modifiedTime") or "")
                            or timezone.now(),
                        }
                    )
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except (GoogleAuthError, HttpError) as e:
            logger.error(f"GoogleDriveStorage: Failed to list folder {self.folder_id}: {e}")
            raise StorageError(f"Failed to list Google Drive folder: {e}") from e

        return items

    def upload(self, local_path, remote_key):
        name = PurePosixPath(remote_key).name
        try:
            service = self._get_service()
            existing_id = self._find_file_id(name)
            media = MediaFileUpload(local_path, mimetype="application/gzip", resumable=True)

            if existing_id:
                service.files().update(fileId=existing_id, media_body=media).execute()
            else:
                service.files().create(
                    body={"name": name, "parents": [self.folder_id]},
                    media_body=media,
                    fields="id",
                ).execute()
        except (GoogleAuthError, HttpError, OSError) as e:
            logger.error(f"GoogleDriveStorage: Failed to upload {local_path} as {name}: {e}")
            raise StorageError(f"Failed to upload {name} to Google Drive: {e}") from e

        logger.info(f"GoogleDriveStorage: Uploaded {local_path} as {name}")

    def download(self, remote_key, local_path):
        name = PurePosixPath(remote_key).name
        try:
            file_id = self._find_file_id(name)
            if not file_id:
                raise StorageError(f"File not found in Google Drive: {name}")

            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            request = self._get_service().files().get_media(fileId=file_id)
            with open(local_path, "wb") as file:
                downloader = MediaIoBaseDownload(file, request)
                done = False
                while not done:
                    _, done = downloader.next_chunk()
        except (GoogleAuthError, HttpError, OSError) as e:
            logger.error(f"GoogleDriveStorage: Failed to download {name}: {e}")
            raise StorageError(f"Failed to download {name} from Google Drive: {e}") from e

        logger.info(f"GoogleDriveStorage: Downloaded {name} to {local_path}")

    def delete(self, remote_key):
        name = PurePosixPath(remote_key).name
        try:
            file_id = self._find_file_id(name)
            if not file_id:
                raise StorageError(f"File not found in Google Drive: {name}")
            self._get_service().files().delete(fileId=file_id).execute()
        except (GoogleAuthError, HttpError) as e:
            logger.error(f"GoogleDriveStorage: Failed to delete {name}: {e}")
            raise StorageError(f"Failed to delete {name} from Google Drive: {e}") from e

        logger.info(f"GoogleDriveStorage: Deleted {name}")


STORAGE_BACKENDS = {
    backend.provider: backend
    for backend in (S3CompatibleStorage, BackblazeB2Storage, GoogleDriveStorage)
}


def _quote(value: str) -> str:
    """Escape a value for use inside a Drive query string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def normalize_endpoint(endpoint: Optional[str]) -> Optional[str]:
    """Return the endpoint as a URL, adding https:// when no scheme is given."""
    endpoint = (endpoint or "").strip()
    if not endpoint:
        return None
    if "://" not in endpoint:
        endpoint = f"https://{endpoint}"
    return endpoint.rstrip("/")


def b2_region_from_endpoint(endpoint: Optional[str]) -> str:
    match = B2_ENDPOINT_PATTERN.search(endpoint or "")
    return match.group(1).lower() if match else "auto"


def get_backend_class(provider: str):
    backend_class = STORAGE_BACKENDS.get(provider)
    if backend_class is None:
        raise UnsupportedProviderError(f"Unsupported provider: {provider}")
    return backend_class


def get_storage_backend(
    provider: str, credentials: Dict[str, Any], config=None
) -> StorageBackend:
    """
    Build a storage backend from a provider name and raw credentials.

    Args:
        provider: One of 's3', 'b2', 'gdrive'
        credentials: Provider-shaped credential mapping
        config: Optional AppConfiguration snapshot (Google Drive OAuth client)

    Returns:
        StorageBackend instance

    Raises:
        UnsupportedProviderError: If the provider is unknown
        InvalidCredentialsError: If a required credential is missing
    """
    backend_class = get_backend_class(provider)
    credentials = credentials or {}

    missing = [
        field
        for field in backend_class.required_fields
        if not str(credentials.get(field) or "").strip()
    ]
    if missing:
        raise InvalidCredentialsError(
            f"Missing required credentials for {provider}: {', '.join(missing)}"
        )

    return backend_class.from_credentials(credentials, config=config)


def get_storage_backend_for_destination(destination, config=None) -> StorageBackend:
    """Build the storage backend for a persisted BackupDestination."""
    return get_storage_backend(destination.provider, destination.credentials, config=config)
