"""
Backup and disaster recovery models for the studio billing platform.

A backup run is one archive uploaded to every active destination:
- BackupDestination: a configured cloud storage target (S3, B2, Google Drive)
- Backup: one run, with its archive metadata and aggregated status
- BackupUpload: the per-destination attempt for a run

Backup and upload statuses are django-fsm state machines that only move
forward.
"""

import uuid

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition


class BackupDestination(models.Model):
    """
    A cloud storage target that backups are uploaded to.

    Credentials are stored as a provider-shaped JSON object. Only the keys the
    provider recognises are kept (see apps.backups.credentials).
    """

    PROVIDER_S3 = "s3"
    PROVIDER_B2 = "b2"
    PROVIDER_GDRIVE = "gdrive"

    PROVIDER_CHOICES = [
        (PROVIDER_S3, "S3-Compatible Storage"),
        (PROVIDER_B2, "Backblaze B2"),
        (PROVIDER_GDRIVE, "Google Drive"),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the destination",
    )

    name = models.CharField(
        max_length=255,
        help_text="Display name for the destination",
    )

    provider = models.CharField(
        max_length=20,
        choices=PROVIDER_CHOICES,
        help_text="Storage provider type",
    )

    credentials = models.JSONField(
        default=dict,
        blank=True,
        help_text="Provider credentials (sensitive fields are masked on read)",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether new backups are uploaded to this destination",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "backup_destinations"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["is_active"], name="backup_dest_active_idx"),
        ]
        verbose_name = "Backup Destination"
        verbose_name_plural = "Backup Destinations"

    def __str__(self):
        return f"{self.name} ({self.get_provider_display()})"


class Backup(models.Model):
    """
    One backup run.

    The run builds a single archive and uploads it to every destination that
    was active when it was triggered. Its status is derived from the upload
    set: completed when every upload completed, failed when every upload
    failed, partial otherwise.
    """

    PROVIDER_MULTI = "multi"

    # Status choices
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (RUNNING, "Running"),
        (COMPLETED, "Completed"),
        (PARTIAL, "Partially Completed"),
        (FAILED, "Failed"),
    ]

    TERMINAL_STATUSES = (COMPLETED, PARTIAL, FAILED)

    # Trigger choices
    TRIGGER_MANUAL = "manual"
    TRIGGER_SCHEDULED = "scheduled"

    TRIGGER_CHOICES = [
        (TRIGGER_MANUAL, "Manual"),
        (TRIGGER_SCHEDULED, "Scheduled"),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the backup",
    )

    provider = models.CharField(
        max_length=20,
        help_text="Provider of the single destination, or 'multi'",
    )

    status = FSMField(
        default=PENDING,
        choices=STATUS_CHOICES,
        help_text="Current status of the backup run",
    )

    file_name = models.CharField(
        max_length=500,
        blank=True,
        help_text="Remote key of the archive (backups/<archive name>)",
    )

    file_size = models.BigIntegerField(
        null=True,
        blank=True,
        help_text="Size of the archive in bytes",
    )

    manifest = models.JSONField(
        null=True,
        blank=True,
        help_text="Manifest embedded in the archive",
    )

    error_message = models.TextField(
        blank=True,
        help_text="Error message if the run failed before uploading",
    )

    triggered_by = models.CharField(
        max_length=20,
        choices=TRIGGER_CHOICES,
        default=TRIGGER_MANUAL,
        help_text="What started the run",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="backups",
        help_text="User who triggered the backup (null for scheduled backups)",
    )

    started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the run started executing",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the run reached a terminal status",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "backups"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="backup_status_idx"),
            models.Index(fields=["-created_at"], name="backup_created_idx"),
        ]
        verbose_name = "Backup"
        verbose_name_plural = "Backups"

    def __str__(self):
        return f"Backup {self.id} ({self.status}) - {self.created_at:%Y-%m-%d %H:%M}"

    def is_finished(self):
        return self.status in self.TERMINAL_STATUSES

    def get_size_mb(self):
        """Get archive size in megabytes."""
        if not self.file_size:
            return 0
        return round(self.file_size / (1024 * 1024), 2)

    # FSM Transitions
    @transition(field=status, source=PENDING, target=RUNNING)
    def start(self):
        """Start executing the run."""
        self.started_at = timezone.now()

    @transition(field=status, source=RUNNING, target=COMPLETED)
    def complete(self):
        """Every upload completed."""
        self.completed_at = timezone.now()

    @transition(field=status, source=RUNNING, target=PARTIAL)
    def complete_partially(self):
        """Some uploads completed and some failed."""
        self.completed_at = timezone.now()

    @transition(field=status, source=[PENDING, RUNNING], target=FAILED)
    def fail(self, message=""):
        """Fail the run, before or after uploads were attempted."""
        if message:
            self.error_message = message
        self.completed_at = timezone.now()

    def finish(self, outcome):
        """Move a running backup to the terminal ``outcome`` status."""
        if outcome == self.COMPLETED:
            self.complete()
        elif outcome == self.PARTIAL:
            self.complete_partially()
        elif outcome == self.FAILED:
            self.fail()
        else:
            raise ValueError(f"Not a terminal backup status: {outcome}")


class BackupUpload(models.Model):
    """
    Upload of one backup archive to one destination.
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (UPLOADING, "Uploading"),
        (COMPLETED, "Completed"),
        (FAILED, "Failed"),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the upload",
    )

    backup = models.ForeignKey(
        Backup,
        on_delete=models.CASCADE,
        related_name="uploads",
        help_text="Backup run this upload belongs to",
    )

    destination = models.ForeignKey(
        BackupDestination,
        on_delete=models.CASCADE,
        related_name="uploads",
        help_text="Destination the archive is uploaded to",
    )

    status = FSMField(
        default=PENDING,
        choices=STATUS_CHOICES,
        help_text="Current status of the upload",
    )

    error_message = models.TextField(
        blank=True,
        help_text="Provider error if the upload failed",
    )

    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "backup_uploads"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["backup", "status"], name="backup_upload_status_idx"),
        ]
        verbose_name = "Backup Upload"
        verbose_name_plural = "Backup Uploads"

    def __str__(self):
        return f"{self.backup_id} -> {self.destination_id} ({self.status})"

    # FSM Transitions
    @transition(field=status, source=PENDING, target=UPLOADING)
    def start(self):
        self.started_at = timezone.now()

    @transition(field=status, source=UPLOADING, target=COMPLETED)
    def complete(self):
        self.completed_at = timezone.now()

    @transition(field=status, source=[PENDING, UPLOADING], target=FAILED)
    def fail(self, message):
        self.error_message = message
        self.completed_at = timezone.now()
