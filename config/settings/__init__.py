"""
Settings package for the studio billing platform.

Pick a module with DJANGO_SETTINGS_MODULE:
- config.settings.development: local work, DEBUG on, .env loaded
- config.settings.production: JSON logs, Redis cache, required env checked
- config.settings.test: SQLite in memory, eager Celery, used by pytest
"""
