"""
Serializers for chat records.

Record serializers render a single row as the flat dict carried by realtime
events and returned by services; summary serializers render the enriched
shapes used by the chat directory.

Serializer Hierarchy:
    MessageRecordSerializer: Message row (realtime payload, message lists)
    TypingSignalRecordSerializer: TypingSignal row
    ChatMemberRecordSerializer: ChatMember row
    UserCardSerializer: User display data (member pickers)
    MemberSerializer: ChatMember with display data
    ChatSummarySerializer: Directory entry (1:1 or group shape)

Design Decisions:
    - Records use *_id integer fields, never nested objects
    - Datetimes are ISO 8601 strings so payloads survive any channel layer
    - ChatSummarySerializer needs context={"user": requesting_user}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from authentication.models import User
from chat.models import Chat, ChatMember, Message, TypingSignal

if TYPE_CHECKING:
    from typing import Any

UNKNOWN_USER_NAME = "Unknown user"


def to_record(serializer_class, instance) -> dict[str, Any]:
    """Serialize instance into a plain dict."""
    return dict(serializer_class(instance).data)


class MessageRecordSerializer(serializers.ModelSerializer):
    chat_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Message
        fields = ["id", "chat_id", "user_id", "content", "file_url", "created_at", "updated_at"]
        read_only_fields = fields


class TypingSignalRecordSerializer(serializers.ModelSerializer):
    chat_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = TypingSignal
        fields = ["id", "chat_id", "user_id", "created_at"]
        read_only_fields = fields


class ChatMemberRecordSerializer(serializers.ModelSerializer):
    chat_id = serializers.IntegerField(read_only=True)
    user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ChatMember
        fields = ["id", "chat_id", "user_id", "joined_at"]
        read_only_fields = fields


class UserCardSerializer(serializers.ModelSerializer):
    """Minimal public user data for pickers and member lists."""

    username = serializers.CharField(source="display_name", read_only=True)
    avatar_url = serializers.CharField(read_only=True, allow_null=True)

    class Meta:
        model = User
        fields = ["id", "username", "avatar_url"]
        read_only_fields = fields


class MemberSerializer(serializers.ModelSerializer):
    """Chat member with display data and admin flag."""

    user_id = serializers.IntegerField(read_only=True)
    username = serializers.CharField(source="user.display_name", read_only=True)
    avatar_url = serializers.CharField(source="user.avatar_url", read_only=True, allow_null=True)
    is_admin = serializers.SerializerMethodField()

    class Meta:
        model = ChatMember
        fields = ["user_id", "username", "avatar_url", "joined_at", "is_admin"]
        read_only_fields = fields

    def get_is_admin(self, obj: ChatMember) -> bool:
        return obj.chat.created_by_id == obj.user_id and obj.chat.is_group


class ChatSummarySerializer(serializers.ModelSerializer):
    """
    Directory entry for one chat, from the requesting user's point of view.

    1:1 chats carry the counterpart's display data (other_user_id,
    other_username, other_user_avatar); group chats carry member_count and
    the group's own fields. Expects members (with user and profile) to be
    prefetched when serializing many chats.
    """

    created_by = serializers.IntegerField(source="created_by_id", read_only=True, allow_null=True)

    class Meta:
        model = Chat
        fields = ["id", "is_group", "created_at", "created_by"]
        read_only_fields = fields

    def to_representation(self, instance: Chat) -> dict[str, Any]:
        data = super().to_representation(instance)
        members = list(instance.members.all())

        if instance.is_group:
            data.update(
                {
                    "group_name": instance.group_name,
                    "group_description": instance.group_description,
                    "group_avatar_url": instance.group_avatar_url or None,
                    "member_count": len(members),
                }
            )
            return data

        user = self.context["user"]
        other = next((m.user for m in members if m.user_id != user.id), None)
        data.update(
            {
                "other_user_id": other.id if other else None,
                "other_username": other.display_name if other else UNKNOWN_USER_NAME,
                "other_user_avatar": other.avatar_url if other else None,
            }
        )
        return data
