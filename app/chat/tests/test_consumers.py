"""
Tests for the chat WebSocket consumer.

Connects through the chat URL router with channels' WebsocketCommunicator;
the authenticated user is placed on the scope directly.
"""

import pytest
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser

from chat.routing import websocket_urlpatterns
from chat.services import MessageService

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]


def _communicator(chat_id, user):
    communicator = WebsocketCommunicator(URLRouter(websocket_urlpatterns), f"/ws/chat/{chat_id}/")
    communicator.scope["user"] = user
    return communicator


async def _receive_types(communicator, count):
    received = {}
    for _ in range(count):
        payload = await communicator.receive_json_from(timeout=2)
        received[payload["type"]] = payload
    return received


class TestConnect:
    """Connection authentication and membership checks."""

    async def test_member_connects(self, direct_chat, alice):
        communicator = _communicator(direct_chat.id, alice)

        connected, _ = await communicator.connect()

        assert connected is True
        await communicator.disconnect()

    @pytest.mark.parametrize(
        "who,expected_code",
        [
            ("anonymous", 4001),
            ("outsider", 4003),
        ],
    )
    async def test_rejected_connections(self, direct_chat, outsider, who, expected_code):
        user = AnonymousUser() if who == "anonymous" else outsider
        communicator = _communicator(direct_chat.id, user)

        connected, code = await communicator.connect()

        assert connected is False
        assert code == expected_code

    async def test_unknown_chat(self, alice):
        communicator = _communicator(999999, alice)

        connected, code = await communicator.connect()

        assert connected is False
        assert code == 4004


class TestReceive:
    """
    Tests for messages sent by the client.

    Verifies:
    - A message is acknowledged and echoed back as a change
    - Typing signals are echoed on the typing topic
    - Unknown types get an error
    """

    async def test_send_message(self, direct_chat, alice):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()

        await communicator.send_json_to({"type": "message", "content": "hi"})
        received = await _receive_types(communicator, 2)

        assert received["change"]["topic"] == "messages"
        assert received["change"]["change"] == "INSERT"
        assert received["change"]["new"]["content"] == "hi"
        assert received["sent"]["id"] == received["change"]["new"]["id"]
        await communicator.disconnect()

    async def test_empty_message_returns_error(self, direct_chat, alice):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()

        await communicator.send_json_to({"type": "message", "content": " "})
        response = await communicator.receive_json_from(timeout=2)

        assert response["type"] == "error"
        assert response["error_code"] == "EMPTY_MESSAGE"
        await communicator.disconnect()

    async def test_typing(self, direct_chat, alice):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()

        await communicator.send_json_to({"type": "typing"})
        response = await communicator.receive_json_from(timeout=2)

        assert response["type"] == "change"
        assert response["topic"] == "typing"
        assert response["new"]["user_id"] == alice.id
        await communicator.disconnect()

    async def test_unknown_type(self, direct_chat, alice):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()

        await communicator.send_json_to({"type": "wave"})
        response = await communicator.receive_json_from(timeout=2)

        assert response == {"type": "error", "message": "Unknown message type: wave"}
        await communicator.disconnect()


class TestBroadcast:
    async def test_message_from_other_member_is_forwarded(self, direct_chat, alice, bob):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()

        await database_sync_to_async(MessageService.send_message)(direct_chat.id, bob, content="yo")
        response = await communicator.receive_json_from(timeout=2)

        assert response["type"] == "change"
        assert response["new"]["user_id"] == bob.id
        assert response["old"] == {}
        await communicator.disconnect()

    async def test_disconnected_socket_receives_nothing(self, direct_chat, alice, bob):
        communicator = _communicator(direct_chat.id, alice)
        await communicator.connect()
        await communicator.disconnect()

        await database_sync_to_async(MessageService.send_message)(direct_chat.id, bob, content="yo")

        assert await communicator.receive_nothing(timeout=0.1) is True
