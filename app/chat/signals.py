"""
Django signals for the chat app.

Publishes row changes to realtime topics:
- Message insert / update / delete -> messages_for_chat(chat_id)
- TypingSignal insert -> typing_for_chat(chat_id)
- ChatMember insert / delete -> memberships_for_user(user_id)

Events are built when the signal fires and published once the surrounding
transaction commits; a rolled back write publishes nothing.
"""

from __future__ import annotations

import logging

from django.db import transaction
from django.db.models.signals import post_delete, post_save

from chat.realtime import ChangeEvent, ChangeType, RealtimeHub, Topic
from chat.serializers import (
    ChatMemberRecordSerializer,
    MessageRecordSerializer,
    TypingSignalRecordSerializer,
    to_record,
)

logger = logging.getLogger(__name__)


def connect_signals():
    """
    Connect all signal handlers.

    Called from ChatConfig.ready() to ensure signals are connected
    after all models are loaded.
    """
    from chat.models import ChatMember, Message, TypingSignal

    post_save.connect(publish_message_saved, sender=Message, dispatch_uid="chat_message_saved")
    post_delete.connect(publish_message_deleted, sender=Message, dispatch_uid="chat_message_deleted")
    post_save.connect(publish_typing_signal, sender=TypingSignal, dispatch_uid="chat_typing_saved")
    post_save.connect(publish_member_added, sender=ChatMember, dispatch_uid="chat_member_saved")
    post_delete.connect(publish_member_removed, sender=ChatMember, dispatch_uid="chat_member_deleted")

    logger.debug("Chat signals connected")


def _publish_on_commit(event: ChangeEvent) -> None:
    transaction.on_commit(lambda: RealtimeHub.publish_sync(event))


def publish_message_saved(sender, instance, created: bool, raw: bool = False, **kwargs) -> None:
    if raw:
        return
    _publish_on_commit(
        ChangeEvent(
            topic=Topic.messages_for_chat(instance.chat_id),
            change=ChangeType.INSERT if created else ChangeType.UPDATE,
            table=sender._meta.db_table,
            new=to_record(MessageRecordSerializer, instance),
            old={} if created else {"id": instance.id, "chat_id": instance.chat_id},
        )
    )


def publish_message_deleted(sender, instance, **kwargs) -> None:
    _publish_on_commit(
        ChangeEvent(
            topic=Topic.messages_for_chat(instance.chat_id),
            change=ChangeType.DELETE,
            table=sender._meta.db_table,
            old={"id": instance.id, "chat_id": instance.chat_id, "user_id": instance.user_id},
        )
    )


def publish_typing_signal(sender, instance, created: bool, raw: bool = False, **kwargs) -> None:
    # Typing rows are insert-only
    if raw or not created:
        return
    _publish_on_commit(
        ChangeEvent(
            topic=Topic.typing_for_chat(instance.chat_id),
            change=ChangeType.INSERT,
            table=sender._meta.db_table,
            new=to_record(TypingSignalRecordSerializer, instance),
        )
    )


def publish_member_added(sender, instance, created: bool, raw: bool = False, **kwargs) -> None:
    if raw or not created:
        return
    _publish_on_commit(
        ChangeEvent(
            topic=Topic.memberships_for_user(instance.user_id),
            change=ChangeType.INSERT,
            table=sender._meta.db_table,
            new=to_record(ChatMemberRecordSerializer, instance),
        )
    )


def publish_member_removed(sender, instance, **kwargs) -> None:
    _publish_on_commit(
        ChangeEvent(
            topic=Topic.memberships_for_user(instance.user_id),
            change=ChangeType.DELETE,
            table=sender._meta.db_table,
            old={"id": instance.id, "chat_id": instance.chat_id, "user_id": instance.user_id},
        )
    )
