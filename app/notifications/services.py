"""
Notification service layer.

This module provides the message fan-out used by the chat system.

Services:
    NotificationFanout: One notification per other chat member on send

Design Principles:
    - Services are stateless (use class methods)
    - Fan-out is best-effort: failures are logged and reported through
      ServiceResult / counts, never raised to the sender
    - Each insert runs in its own savepoint so one failed recipient does not
      poison the caller's transaction

Usage:
    from notifications.services import NotificationFanout

    created = NotificationFanout.fan_out(message)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from chat.constants import GROUP_CONFIG, MESSAGE_CONFIG
from notifications.models import Notification, NotificationKind

if TYPE_CHECKING:
    from authentication.models import User
    from chat.models import Chat, Message

logger = logging.getLogger(__name__)


class NotificationFanout(BaseService):
    """
    Creates message notifications for the other members of a chat.

    Methods:
        compose_message_text: Render the notification text
        notify_recipient: Insert one notification
        fan_out: Notify every member except the sender
    """

    @staticmethod
    def compose_message_text(chat: Chat, sender: User, message: Message) -> str:
        """
        Render the notification text for a message.

        Group chats:  "<group name>: <sender name>: <content>"
        1:1 chats:    "<content>"

        Empty content (file-only messages) reads "sent an attachment"; an
        unnamed group reads "Group chat".
        """
        body = message.content or MESSAGE_CONFIG.ATTACHMENT_PLACEHOLDER
        if chat.is_group:
            group_name = chat.group_name or GROUP_CONFIG.DEFAULT_NAME
            return f"{group_name}: {sender.display_name}: {body}"
        return body

    @classmethod
    def notify_recipient(
        cls,
        message: Message,
        chat: Chat,
        recipient_id: int,
    ) -> ServiceResult[Notification]:
        """
        Insert one message notification for recipient_id.

        Never raises; a failed insert is logged and returned as a failure
        with error_code NOTIFICATION_FAILED.
        """
        try:
            with cls.atomic():
                notification = Notification.objects.create(
                    user_id=recipient_id,
                    sender_id=message.user_id,
                    type=NotificationKind.MESSAGE,
                    message=cls.compose_message_text(chat, message.user, message),
                    chat=chat,
                )
        except Exception as e:
            return cls.handle_exception(
                e,
                f"Notification for user {recipient_id} on message {message.id} failed",
                log_level=logging.WARNING,
                error_code="NOTIFICATION_FAILED",
            )
        return ServiceResult.success(notification)

    @classmethod
    def fan_out(cls, message: Message) -> int:
        """
        Notify every member of the message's chat except its sender.

        Returns:
            Number of notifications created
        """
        from chat.models import ChatMember

        try:
            chat = message.chat
            recipient_ids = list(
                ChatMember.objects.filter(chat_id=chat.id)
                .exclude(user_id=message.user_id)
                .values_list("user_id", flat=True)
            )
        except Exception as e:
            cls.get_logger().warning(f"Fan-out for message {message.id} skipped: {e}", exc_info=True)
            return 0

        created = 0
        for recipient_id in recipient_ids:
            if cls.notify_recipient(message, chat, recipient_id).success:
                created += 1

        if created < len(recipient_ids):
            cls.get_logger().warning(
                f"Fan-out for message {message.id}: {created}/{len(recipient_ids)} notified"
            )
        return created
