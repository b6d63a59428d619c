"""
URL configuration for the setup wizard.
"""

from django.urls import path

from apps.backups import setup_views

from . import views

app_name = "setup"

urlpatterns = [
    path("", views.SetupStatusView.as_view(), name="status"),
    path("fresh/", views.FreshSetupView.as_view(), name="fresh"),
    path(
        "restore/test/",
        setup_views.RestoreTestConnectionView.as_view(),
        name="restore_test",
    ),
    path("restore/list/", setup_views.RestoreListView.as_view(), name="restore_list"),
    path(
        "restore/execute/",
        setup_views.RestoreExecuteView.as_view(),
        name="restore_execute",
    ),
]
