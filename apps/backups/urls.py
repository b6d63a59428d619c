"""
URL configuration for the backup API.
"""

from django.urls import path

from . import views

app_name = "backups"

urlpatterns = [
    path("settings/", views.BackupSettingsView.as_view(), name="settings"),
    path("create/", views.BackupCreateView.as_view(), name="create"),
    path("history/", views.BackupHistoryView.as_view(), name="history"),
    path("stats/", views.BackupStatsView.as_view(), name="stats"),
    path("<uuid:pk>/", views.BackupDetailView.as_view(), name="detail"),
    # Destinations
    path(
        "destinations/",
        views.DestinationListCreateView.as_view(),
        name="destination_list",
    ),
    path(
        "destinations/test/",
        views.DestinationConnectionTestView.as_view(),
        name="destination_test_unsaved",
    ),
    path(
        "destinations/<uuid:pk>/",
        views.DestinationDetailView.as_view(),
        name="destination_detail",
    ),
    path(
        "destinations/<uuid:pk>/toggle/",
        views.DestinationToggleView.as_view(),
        name="destination_toggle",
    ),
    path(
        "destinations/<uuid:pk>/test/",
        views.DestinationTestView.as_view(),
        name="destination_test",
    ),
]
