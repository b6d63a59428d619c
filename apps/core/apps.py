from django.apps import AppConfig


class CoreConfig(AppConfig):
    """Application settings and the initial-setup flow."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.core"
    verbose_name = "Setup & Settings"
