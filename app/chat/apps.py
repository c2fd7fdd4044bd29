"""
Chat application configuration.

This app provides the chat system with:
- 1:1 and group chats with a single group admin (the creator)
- Messages with optional file attachments, edit and hard delete
- Typing signals
- Realtime row-change events for all of the above
- Ordered, resumable chat deletion
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"

    def ready(self):
        """Connect realtime publishing signals."""
        from chat.signals import connect_signals

        connect_signals()
