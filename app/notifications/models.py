"""
Notification system models.

This module defines the in-app notification record:
- NotificationKind: What triggered the notification
- Notification: One row per (recipient, triggering event)

Design Decisions:
    - Notification inherits from BaseModel (timestamps, ordering)
    - Sender uses SET_NULL (preserve notification when sender deleted)
    - Chat uses PROTECT: chat deletion removes notifications explicitly,
      before messages and memberships
    - post_id / comment_id are plain integers; posts and comments live in
      another service and are only referenced here

Usage:
    from notifications.models import Notification, NotificationKind

    Notification.objects.create(
        user=recipient,
        sender=author,
        type=NotificationKind.MESSAGE,
        message="Weekend trip: olena: see you there",
        chat=chat,
    )
"""

from django.conf import settings
from django.db import models

from core.models import BaseModel


class NotificationKind(models.TextChoices):
    """Event kinds that produce a notification."""

    MESSAGE = "message", "Message"
    COMMENT = "comment", "Comment"
    COMMENT_LIKE = "comment_like", "Comment like"
    REACTION = "reaction", "Reaction"


class Notification(BaseModel):
    """
    In-app notification delivered to a single user.

    Fields:
        user: Recipient
        sender: User whose action triggered the notification
        type: NotificationKind
        message: Rendered, human-readable text
        chat: Chat the notification refers to (message notifications only)
        post_id: Referenced post (comment / reaction notifications)
        comment_id: Referenced comment (comment_like notifications)
        is_read: Whether the recipient has seen it
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User receiving this notification",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_notifications",
        help_text="User who triggered this notification",
    )

    type = models.CharField(
        max_length=20,
        choices=NotificationKind.choices,
        db_index=True,
    )

    message = models.TextField(
        help_text="Rendered notification text",
    )

    chat = models.ForeignKey(
        "chat.Chat",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="notifications",
    )

    post_id = models.BigIntegerField(null=True, blank=True)

    comment_id = models.BigIntegerField(null=True, blank=True)

    is_read = models.BooleanField(default=False, db_index=True)

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["user", "is_read", "-created_at"],
                name="notif_user_unread_idx",
            ),
        ]

    def __str__(self):
        return f"{self.type} for {self.user_id}: {self.message[:40]}"
