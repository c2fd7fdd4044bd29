"""
Notifications application configuration.

Holds in-app notifications and the fan-out that creates them when a chat
message is sent.
"""

from django.apps import AppConfig


class NotificationsConfig(AppConfig):
    """Configuration for the notifications app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "notifications"
    verbose_name = "Notifications"
