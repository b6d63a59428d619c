"""
URL configuration for the studio billing platform.
"""

from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path

from apps.backups import oauth_views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/backups/", include("apps.backups.urls")),
    path("api/setup/", include("apps.core.urls")),
    # Google Drive linking; the callback path is registered with Google
    path(
        "api/backup/gdrive/authorize",
        oauth_views.GoogleDriveAuthorizeView.as_view(),
        name="gdrive_authorize",
    ),
    path(
        "api/backup/gdrive/authorize-setup",
        oauth_views.GoogleDriveSetupAuthorizeView.as_view(),
        name="gdrive_authorize_setup",
    ),
    path(
        "api/backup/gdrive/callback",
        oauth_views.google_drive_callback,
        name="gdrive_callback",
    ),
]

# Serve media files in development
if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
