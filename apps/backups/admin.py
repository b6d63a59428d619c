"""
Admin interface for backup models.
"""

import json

from django.contrib import admin
from django.utils.html import format_html

from .credentials import mask_credentials
from .models import Backup, BackupDestination, BackupUpload

STATUS_COLORS = {
    "pending": "gray",
    "running": "blue",
    "uploading": "blue",
    "completed": "green",
    "partial": "orange",
    "failed": "red",
}


def _status_badge(obj):
    return format_html(
        '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
        STATUS_COLORS.get(obj.status, "gray"),
        obj.get_status_display(),
    )


@admin.register(BackupDestination)
class BackupDestinationAdmin(admin.ModelAdmin):
    """
    Admin interface for BackupDestination model.

    Credentials are shown masked and cannot be edited here; use the backup
    settings API so secrets go through the merge rules.
    """

    list_display = ["name", "provider", "is_active", "created_at"]
    list_filter = ["provider", "is_active"]
    search_fields = ["name"]
    exclude = ["credentials"]
    readonly_fields = ["id", "masked_credentials", "created_at", "updated_at"]

    def masked_credentials(self, obj):
        masked = mask_credentials(obj.provider, obj.credentials)
        return format_html("<pre>{}</pre>", json.dumps(masked, indent=2, sort_keys=True))

    masked_credentials.short_description = "Credentials"


class BackupUploadInline(admin.TabularInline):
    model = BackupUpload
    extra = 0
    can_delete = False
    fields = ["destination", "status", "error_message", "started_at", "completed_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Backup)
class BackupAdmin(admin.ModelAdmin):
    """Admin interface for Backup model."""

    list_display = [
        "id",
        "provider",
        "file_name",
        "size_display",
        "status_badge",
        "triggered_by",
        "created_at",
    ]
    list_filter = ["status", "provider", "triggered_by", "created_at"]
    search_fields = ["file_name", "error_message"]
    readonly_fields = [
        "id",
        "provider",
        "status",
        "file_name",
        "file_size",
        "manifest",
        "error_message",
        "triggered_by",
        "user",
        "started_at",
        "completed_at",
        "created_at",
        "updated_at",
    ]
    inlines = [BackupUploadInline]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False

    def size_display(self, obj):
        """Display size in human-readable format."""
        if obj.file_size < 1024 * 1024:
            return f"{obj.file_size / 1024:.2f} KB"
        return f"{obj.get_size_mb()} MB"

    size_display.short_description = "Size"

    def status_badge(self, obj):
        return _status_badge(obj)

    status_badge.short_description = "Status"
