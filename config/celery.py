"""
Celery configuration for the studio billing platform.

Recurring backups are not listed in a static beat schedule: the backup
schedule is admin-editable, so it lives in django-celery-beat's database
tables (see apps.backups.services.BackupScheduleService) and beat runs with
the DatabaseScheduler.
"""

import os

from celery import Celery

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.development")

app = Celery("studio")

# Using a string here means the worker doesn't have to serialize
# the configuration object to child processes.
# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

# Task routing
app.conf.task_routes = {
    "apps.backups.tasks.*": {"queue": "backups"},
}

# Task result expiration
app.conf.result_expires = 3600  # 1 hour
