from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django_fsm
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="BackupDestination",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for the destination",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "name",
                    models.CharField(help_text="Display name for the destination", max_length=255),
                ),
                (
                    "provider",
                    models.CharField(
                        choices=[
                            ("s3", "S3-Compatible Storage"),
                            ("b2", "Backblaze B2"),
                            ("gdrive", "Google Drive"),
                        ],
                        help_text="Storage provider type",
                        max_length=20,
                    ),
                ),
                (
                    "credentials",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Provider credentials (sensitive fields are masked on read)",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Whether new backups are uploaded to this destination",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Backup Destination",
                "verbose_name_plural": "Backup Destinations",
                "db_table": "backup_destinations",
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["is_active"], name="backup_dest_active_idx")],
            },
        ),
        migrations.CreateModel(
            name="Backup",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for the backup",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "provider",
                    models.CharField(
                        help_text="Provider of the single destination, or 'multi'",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("partial", "Partially Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        help_text="Current status of the backup run",
                        max_length=50,
                    ),
                ),
                (
                    "file_name",
                    models.CharField(
                        blank=True,
                        help_text="Remote key of the archive (backups/<archive name>)",
                        max_length=500,
                    ),
                ),
                (
                    "file_size",
                    models.BigIntegerField(
                        blank=True, help_text="Size of the archive in bytes", null=True
                    ),
                ),
                (
                    "manifest",
                    models.JSONField(
                        blank=True, help_text="Manifest embedded in the archive", null=True
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if the run failed before uploading",
                    ),
                ),
                (
                    "triggered_by",
                    models.CharField(
                        choices=[("manual", "Manual"), ("scheduled", "Scheduled")],
                        default="manual",
                        help_text="What started the run",
                        max_length=20,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        blank=True, help_text="When the run started executing", null=True
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the run reached a terminal status",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        help_text="User who triggered the backup (null for scheduled backups)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="backups",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Backup",
                "verbose_name_plural": "Backups",
                "db_table": "backups",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="backup_status_idx"),
                    models.Index(fields=["-created_at"], name="backup_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BackupUpload",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for the upload",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("uploading", "Uploading"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        help_text="Current status of the upload",
                        max_length=50,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(blank=True, help_text="Provider error if the upload failed"),
                ),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "backup",
                    models.ForeignKey(
                        help_text="Backup run this upload belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="uploads",
                        to="backups.backup",
                    ),
                ),
                (
                    "destination",
                    models.ForeignKey(
                        help_text="Destination the archive is uploaded to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="uploads",
                        to="backups.backupdestination",
                    ),
                ),
            ],
            options={
                "verbose_name": "Backup Upload",
                "verbose_name_plural": "Backup Uploads",
                "db_table": "backup_uploads",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["backup", "status"], name="backup_upload_status_idx"),
                ],
            },
        ),
    ]
