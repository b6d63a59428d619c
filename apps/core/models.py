"""
Core models for the studio billing platform.
"""

from django.conf import settings
from django.db import models


class AppSetting(models.Model):
    """
    Flat key/value store for global application settings.

    Holds runtime configuration edited from the admin UI (backup schedule,
    retention, setup state, Google OAuth client) and the legacy backup keys
    that predate BackupDestination rows.
    """

    key = models.CharField(
        max_length=100,
        primary_key=True,
        help_text="Setting name",
    )

    value = models.TextField(
        blank=True,
        default="",
        help_text="Setting value, stored as text",
    )

    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the setting was last written",
    )

    last_edited_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who last changed the setting",
    )

    class Meta:
        db_table = "app_settings"
        ordering = ["key"]
        verbose_name = "App Setting"
        verbose_name_plural = "App Settings"

    def __str__(self):
        return f"{self.key}={self.value}"

    @classmethod
    def get_value(cls, key, default=""):
        row = cls.objects.filter(key=key).only("value").first()
        return row.value if row is not None else default

    @classmethod
    def set_value(cls, key, value, user=None):
        """Insert or update a setting. Values are always stored as text."""
        row, _ = cls.objects.update_or_create(
            key=key,
            defaults={"value": str(value), "last_edited_by": user},
        )
        return row

    @classmethod
    def load(cls, keys=None):
        """Return settings as a plain dict, optionally restricted to ``keys``."""
        queryset = cls.objects.all()
        if keys is not None:
            queryset = queryset.filter(key__in=list(keys))
        return dict(queryset.values_list("key", "value"))
