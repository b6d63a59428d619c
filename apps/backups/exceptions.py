"""
Exceptions raised by the backup and disaster recovery subsystem.

Views translate these into JSON error responses; see
apps.backups.views.BackupAPIView.handle_exception.
"""


class BackupError(Exception):
    """Base class for backup subsystem errors."""

    status_code = 500


class UnsupportedProviderError(BackupError):
    """Provider string is not one of the known storage providers."""

    status_code = 400


class InvalidCredentialsError(BackupError):
    """Credentials are missing required fields for their provider."""

    status_code = 400


class StorageError(BackupError):
    """A storage provider operation (list/upload/download/delete) failed."""

    status_code = 502


class ArchiveError(BackupError):
    """Backup archive could not be built, or is corrupt or structurally invalid."""

    status_code = 400


class DatabaseRestoreError(BackupError):
    """The native database restore tool failed."""

    status_code = 500


class NoActiveDestinationsError(BackupError):
    """A backup was triggered with no active destination configured."""

    status_code = 400

    def __init__(self, message="No active backup destinations configured"):
        super().__init__(message)


class SetupAlreadyCompletedError(BackupError):
    """A setup-time endpoint was called after initial setup finished."""

    status_code = 403

    def __init__(self, message="Setup already completed"):
        super().__init__(message)


class RestoreInProgressError(BackupError):
    """Another restore is already running."""

    status_code = 409

    def __init__(self, message="A restore is already in progress"):
        super().__init__(message)


class OAuthStateError(BackupError):
    """OAuth state cookie is missing, tampered with, expired, or does not match."""

    status_code = 400


class OAuthExchangeError(BackupError):
    """Google rejected the authorization code or returned no refresh token."""

    status_code = 502
