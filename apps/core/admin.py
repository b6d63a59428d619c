"""
Django admin configuration for core models.
"""

from django.contrib import admin

from .models import AppSetting


@admin.register(AppSetting)
class AppSettingAdmin(admin.ModelAdmin):
    """Admin interface for global application settings."""

    list_display = ["key", "value", "updated_at", "last_edited_by"]
    search_fields = ["key"]
    readonly_fields = ["updated_at", "last_edited_by"]

    def save_model(self, request, obj, form, change):
        obj.last_edited_by = request.user
        super().save_model(request, obj, form, change)
