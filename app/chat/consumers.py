"""
WebSocket consumers for the chat application.

This module exposes a chat's realtime topics over a WebSocket so that
browser clients receive the same row-change events as in-process
subscribers.

Consumers:
    ChatConsumer: One socket per (user, chat)

Authentication:
    The user is attached to self.scope["user"] by the ASGI auth stack
    (channels.auth.AuthMiddlewareStack in config/asgi.py).

Channel Groups:
    The socket joins the groups of Topic.messages_for_chat(chat_id) and
    Topic.typing_for_chat(chat_id).

Message Types (from client):
    - typing: Record a typing signal
    - message: Send a new message ({"type": "message", "content": "Hi"})

Message Types (to client):
    - change: Row change {"type": "change", "topic", "change", "new", "old"}
    - sent: Acknowledgement of a message sent over this socket
    - error: Error response
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser

from chat.models import Chat, ChatMember
from chat.realtime import ChangeEvent, Topic
from chat.services import MessageService, TypingService

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for one chat.

    Handles:
        - Connection authentication and membership check
        - Joining/leaving the chat's realtime groups
        - Forwarding message and typing changes to the client
        - Sending messages and typing signals from the client

    Close codes:
        4001: Not authenticated
        4004: Chat does not exist
        4003: User is not a member of the chat
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.chat_id: int | None = None
        self.group_names: list[str] = []

    async def connect(self):
        self.chat_id = self.scope["url_route"]["kwargs"]["chat_id"]
        user = self.scope.get("user")

        if not user or isinstance(user, AnonymousUser) or not user.is_authenticated:
            logger.warning(f"Rejected unauthenticated connection to chat {self.chat_id}")
            await self.close(code=4001)
            return

        if not await self._chat_exists():
            logger.warning(f"User {user.id} tried to connect to non-existent chat {self.chat_id}")
            await self.close(code=4004)
            return

        if not await self._is_member(user):
            logger.warning(f"User {user.id} is not a member of chat {self.chat_id}")
            await self.close(code=4003)
            return

        self.group_names = [
            Topic.messages_for_chat(self.chat_id).group_name,
            Topic.typing_for_chat(self.chat_id).group_name,
        ]
        for group_name in self.group_names:
            await self.channel_layer.group_add(group_name, self.channel_name)

        await self.accept()
        logger.info(f"User {user.id} connected to chat {self.chat_id}")

    async def disconnect(self, close_code):
        for group_name in self.group_names:
            await self.channel_layer.group_discard(group_name, self.channel_name)
        if self.group_names:
            logger.info(f"User {self.scope['user'].id} disconnected from chat {self.chat_id}")
        self.group_names = []

    async def receive_json(self, content, **kwargs):
        """
        Handle incoming WebSocket messages.

        Expected message format:
            {"type": "typing"}
            {"type": "message", "content": "Hello!"}
        """
        message_type = content.get("type")
        user = self.scope["user"]

        if message_type == "typing":
            result = await database_sync_to_async(TypingService.record)(self.chat_id, user)
            if not result.success:
                await self._send_error(result)
        elif message_type == "message":
            result = await database_sync_to_async(MessageService.send_message)(
                self.chat_id,
                user,
                content=content.get("content", ""),
            )
            if result.success:
                await self.send_json({"type": "sent", "id": result.data.id})
            else:
                await self._send_error(result)
        else:
            await self.send_json(
                {
                    "type": "error",
                    "message": f"Unknown message type: {message_type}",
                }
            )

    async def realtime_change(self, event):
        """
        Handle realtime.change events from the channel layer.

        Sends the row change to the WebSocket client.
        """
        change = ChangeEvent.from_message(event)
        await self.send_json(
            {
                "type": "change",
                "topic": change.topic.kind.value,
                "change": change.change.value,
                "new": change.new,
                "old": change.old,
            }
        )

    async def _send_error(self, result):
        await self.send_json(
            {
                "type": "error",
                "message": result.error,
                "error_code": result.error_code,
            }
        )

    @database_sync_to_async
    def _chat_exists(self) -> bool:
        return Chat.objects.filter(id=self.chat_id).exists()

    @database_sync_to_async
    def _is_member(self, user) -> bool:
        return ChatMember.objects.filter(chat_id=self.chat_id, user_id=user.id).exists()
