"""
End-to-end tests for the client-side chat state.

These tests drive ChatDirectory, MessageStream and ChatSession against the
real service layer, with writes from other users arriving through the
realtime layer. They need committed data (transaction=True) because
service calls run on a worker thread.
"""

from datetime import timedelta

import pytest
from channels.db import database_sync_to_async
from django.db import OperationalError
from django.utils import timezone

from chat.client import ChatDirectory, ChatSession, MessageStream, MessageView
from chat.models import Chat
from chat.services import ChatService, DirectoryService, MembershipService, MessageService
from chat.tests.helpers import settle, wait_until

pytestmark = [pytest.mark.asyncio, pytest.mark.django_db(transaction=True)]


send_message = database_sync_to_async(MessageService.send_message)


def _view(message_id, created_at, chat_id=1, user_id=1, content=""):
    return MessageView(
        id=message_id,
        chat_id=chat_id,
        user_id=user_id,
        content=content,
        file_url=None,
        created_at=created_at,
    )


# =============================================================================
# Local reconciliation
# =============================================================================


class TestMessageStreamReconciliation:
    """
    Tests for MessageStream local state, without any service call.

    Verifies:
    - Messages stay ordered by (created_at, id) whatever the arrival order
    - Duplicate inserts are merged by id
    - Updates only replace content and updated_at
    """

    async def test_out_of_order_inserts_are_sorted(self, alice):
        stream = MessageStream(alice, chat_id=1)
        now = timezone.now()

        stream.apply_insert(_view(3, now))
        stream.apply_insert(_view(1, now - timedelta(seconds=2)))
        stream.apply_insert(_view(2, now))

        assert [m.id for m in stream.messages] == [1, 2, 3]

    async def test_duplicate_insert_is_ignored(self, alice):
        stream = MessageStream(alice, chat_id=1)
        now = timezone.now()

        stream.apply_insert(_view(1, now, content="first"))
        stream.apply_insert(_view(1, now, content="echo"))

        assert len(stream.messages) == 1
        assert stream.messages[0].content == "first"

    async def test_insert_for_other_chat_is_ignored(self, alice):
        stream = MessageStream(alice, chat_id=1)

        stream.apply_insert(_view(1, timezone.now(), chat_id=2))

        assert stream.messages == []

    async def test_update_keeps_position_and_created_at(self, alice):
        stream = MessageStream(alice, chat_id=1)
        now = timezone.now()
        stream.apply_insert(_view(1, now - timedelta(seconds=1), content="a"))
        stream.apply_insert(_view(2, now, content="b"))

        edited = _view(1, now + timedelta(hours=1), content="a2")
        edited.updated_at = now
        stream.apply_update(edited)

        assert [m.id for m in stream.messages] == [1, 2]
        assert stream.messages[0].content == "a2"
        assert stream.messages[0].created_at == now - timedelta(seconds=1)
        assert stream.messages[0].updated_at == now

    async def test_update_of_unknown_message_is_ignored(self, alice):
        stream = MessageStream(alice, chat_id=1)

        stream.apply_update(_view(9, timezone.now(), content="ghost"))

        assert stream.messages == []

    async def test_from_record_parses_timestamps(self):
        view = MessageView.from_record(
            {
                "id": 1,
                "chat_id": 2,
                "user_id": 3,
                "content": None,
                "file_url": None,
                "created_at": "2024-05-01T10:00:00Z",
                "updated_at": None,
            }
        )

        assert view.content == ""
        assert view.created_at.year == 2024
        assert view.updated_at is None


# =============================================================================
# Chat directory
# =============================================================================


class TestChatDirectory:
    """Tests for ChatDirectory load and realtime membership changes."""

    async def test_load_lists_member_chats(self, alice, direct_chat, group_chat):
        directory = ChatDirectory(alice)

        result = await directory.load()

        assert result.success is True
        assert {entry["id"] for entry in directory.chats} == {direct_chat.id, group_chat.id}
        assert directory.error is None
        assert directory.loading is False

    async def test_new_chat_appears_without_reload(self, alice, bob):
        directory = ChatDirectory(alice)
        await directory.load()
        await directory.start()

        result = await database_sync_to_async(ChatService.create_direct)(bob, alice)

        await wait_until(lambda: directory.contains(result.data.id))
        (entry,) = directory.chats
        assert entry["other_username"] == "bob"
        await directory.stop()

    async def test_removed_membership_drops_chat(self, group_chat, alice, carol):
        directory = ChatDirectory(carol)
        await directory.load()
        await directory.start()

        await database_sync_to_async(MembershipService.remove_member)(group_chat.id, alice, carol.id)

        await wait_until(lambda: not directory.contains(group_chat.id))
        await directory.stop()

    async def test_stopped_directory_ignores_changes(self, alice, bob):
        directory = ChatDirectory(alice)
        await directory.start()
        await directory.stop()

        await database_sync_to_async(ChatService.create_direct)(bob, alice)
        await settle()

        assert directory.chats == []

    async def test_store_outage_keeps_loaded_chats(self, alice, direct_chat, mocker):
        directory = ChatDirectory(alice)
        await directory.load()
        mocker.patch.object(DirectoryService, "list_chats", side_effect=OperationalError("db down"))

        result = await directory.load()

        assert result.success is False
        assert result.error_code == "SERVICE_UNAVAILABLE"
        assert directory.error == "db down"
        assert directory.loading is False
        assert [entry["id"] for entry in directory.chats] == [direct_chat.id]

    async def test_load_keeps_chat_that_arrived_meanwhile(self, alice, direct_chat, group_chat, mocker):
        directory = ChatDirectory(alice)
        late_entry = (await database_sync_to_async(DirectoryService.summarize_chat)(group_chat.id, alice)).data
        original = DirectoryService.list_chats

        def snapshot_before_group(user):
            result = original(user)
            result.data = [entry for entry in result.data if entry["id"] != group_chat.id]
            directory.add(late_entry)
            return result

        mocker.patch.object(DirectoryService, "list_chats", side_effect=snapshot_before_group)

        await directory.load()

        assert {entry["id"] for entry in directory.chats} == {direct_chat.id, group_chat.id}


# =============================================================================
# Message stream
# =============================================================================


class TestMessageStream:
    """
    Tests for MessageStream against the services.

    Verifies:
    - Realtime inserts, edits and deletes from other users are applied
    - The sender's own write and its echo produce one entry
    - Local validation happens before any service call
    """

    async def _open(self, user, chat):
        stream = MessageStream(user, chat_id=chat.id)
        await stream.start()
        await stream.load()
        return stream

    async def test_load_returns_messages_in_order(self, direct_chat, alice, bob):
        await send_message(direct_chat.id, alice, content="one")
        await send_message(direct_chat.id, bob, content="two")

        stream = MessageStream(alice, chat_id=direct_chat.id)
        await stream.load()

        assert [m.content for m in stream.messages] == ["one", "two"]

    async def test_message_from_other_member_arrives(self, direct_chat, alice, bob):
        stream = await self._open(alice, direct_chat)

        await send_message(direct_chat.id, bob, content="ping")

        await wait_until(lambda: len(stream.messages) == 1)
        assert stream.messages[0].content == "ping"
        assert stream.messages[0].user_id == bob.id
        await stream.stop()

    async def test_own_send_and_echo_give_one_entry(self, direct_chat, alice):
        stream = await self._open(alice, direct_chat)

        result = await stream.send("hello")
        await settle()

        assert result.success is True
        assert [m.id for m in stream.messages] == [result.data.id]
        await stream.stop()

    async def test_edit_through_send(self, direct_chat, alice):
        stream = await self._open(alice, direct_chat)
        sent = (await stream.send("helo")).data

        result = await stream.send("hello", editing_id=sent.id)

        assert result.success is True
        assert stream.find(sent.id).content == "hello"
        assert stream.find(sent.id).updated_at is not None
        await stream.stop()

    async def test_edit_from_other_member_arrives(self, direct_chat, alice, bob):
        stream = await self._open(alice, direct_chat)
        message = (await send_message(direct_chat.id, bob, content="typo")).data
        await wait_until(lambda: stream.find(message.id) is not None)

        await database_sync_to_async(MessageService.edit_message)(message.id, bob, "fixed")

        await wait_until(lambda: stream.find(message.id).content == "fixed")
        await stream.stop()

    async def test_cannot_edit_other_users_message(self, direct_chat, alice, bob):
        stream = await self._open(alice, direct_chat)
        message = (await send_message(direct_chat.id, bob, content="bob's")).data
        await wait_until(lambda: stream.find(message.id) is not None)

        result = await stream.send("alice's now", editing_id=message.id)

        assert result.error_code == "NOT_AUTHOR"
        assert stream.error == result.error
        assert stream.find(message.id).content == "bob's"
        await stream.stop()

    async def test_empty_send_is_rejected_locally(self, direct_chat, alice):
        stream = await self._open(alice, direct_chat)

        result = await stream.send("   ")

        assert result.error_code == "EMPTY_MESSAGE"
        assert stream.messages == []
        await stream.stop()

    async def test_send_without_selected_chat(self, alice):
        stream = MessageStream(alice)

        result = await stream.send("hello")

        assert result.error_code == "NO_CHAT_SELECTED"

    async def test_delete_from_other_member_arrives(self, direct_chat, alice, bob):
        stream = await self._open(alice, direct_chat)
        message = (await send_message(direct_chat.id, bob, content="oops")).data
        await wait_until(lambda: stream.find(message.id) is not None)

        await database_sync_to_async(MessageService.delete_message)(message.id, bob)

        await wait_until(lambda: stream.find(message.id) is None)
        await stream.stop()

    async def test_own_delete(self, direct_chat, alice):
        stream = await self._open(alice, direct_chat)
        sent = (await stream.send("bye")).data

        result = await stream.delete(sent.id)

        assert result.success is True
        assert stream.find(sent.id) is None
        await stream.stop()

    async def test_failed_load_keeps_messages(self, direct_chat, outsider):
        stream = MessageStream(outsider, chat_id=direct_chat.id)
        stream.apply_insert(_view(1, timezone.now(), chat_id=direct_chat.id))

        result = await stream.load()

        assert result.error_code == "NOT_PARTICIPANT"
        assert stream.error == result.error
        assert len(stream.messages) == 1

    async def test_store_outage_on_load_keeps_messages(self, direct_chat, alice, mocker):
        await send_message(direct_chat.id, alice, content="kept")
        stream = MessageStream(alice, chat_id=direct_chat.id)
        await stream.load()
        mocker.patch.object(MessageService, "list_messages", side_effect=OperationalError("db down"))

        result = await stream.load()

        assert result.error_code == "SERVICE_UNAVAILABLE"
        assert stream.error == "db down"
        assert stream.loading is False
        assert [m.content for m in stream.messages] == ["kept"]

    async def test_store_outage_on_send_is_a_failure(self, direct_chat, alice, mocker):
        stream = MessageStream(alice, chat_id=direct_chat.id)
        mocker.patch.object(MessageService, "send_message", side_effect=OperationalError("db down"))

        result = await stream.send("hello")

        assert result.success is False
        assert result.error_code == "SERVICE_UNAVAILABLE"
        assert stream.error == "db down"
        assert stream.messages == []

    async def test_switch_chat_stops_old_subscription(self, direct_chat, group_chat, alice, bob):
        stream = await self._open(alice, direct_chat)

        await stream.switch_chat(group_chat.id)
        await send_message(direct_chat.id, bob, content="old chat")
        await send_message(group_chat.id, bob, content="new chat")

        await wait_until(lambda: len(stream.messages) == 1)
        await settle()
        assert [m.content for m in stream.messages] == ["new chat"]
        await stream.clear()
        assert stream.chat_id is None


# =============================================================================
# Session
# =============================================================================


class TestChatSession:
    """Tests for ChatSession workflows."""

    async def test_start_direct_chat_lists_and_selects_it(self, alice, bob):
        session = ChatSession(alice)
        await session.open()

        result = await session.start_direct_chat(bob)

        assert result.success is True
        assert session.selected_chat_id == result.data.id
        assert session.directory.contains(result.data.id)
        assert session.typing is not None
        await session.close()

    async def test_start_direct_chat_with_self_sets_error(self, alice):
        session = ChatSession(alice)

        result = await session.start_direct_chat(alice)

        assert result.error_code == "SAME_USER"
        assert session.error == result.error
        assert session.selected_chat_id is None

    async def test_store_outage_on_delete_keeps_chat_listed(self, alice, direct_chat, mocker):
        session = ChatSession(alice)
        await session.directory.load()
        mocker.patch.object(ChatService, "delete_chat", side_effect=OperationalError("db down"))

        result = await session.delete_chat(direct_chat.id)

        assert result.error_code == "SERVICE_UNAVAILABLE"
        assert session.error == "db down"
        assert session.directory.contains(direct_chat.id)

    async def test_create_group_selects_it(self, alice, bob, carol):
        session = ChatSession(alice)
        await session.open()

        result = await session.create_group("Trip", invited_user_ids=[bob.id, carol.id])

        assert result.success is True
        assert session.selected_chat_id == result.data.id
        await settle()
        assert [entry["id"] for entry in session.directory.chats] == [result.data.id]
        await session.close()

    async def test_delete_selected_chat_clears_selection(self, group_chat, alice):
        session = ChatSession(alice)
        await session.open()
        await session.select_chat(group_chat.id)

        result = await session.delete_chat(group_chat.id)

        assert result.success is True
        assert session.selected_chat_id is None
        assert session.stream.messages == []
        assert not session.directory.contains(group_chat.id)
        assert not await database_sync_to_async(Chat.objects.filter(id=group_chat.id).exists)()
        await session.close()

    async def test_denied_delete_keeps_chat(self, group_chat, bob):
        session = ChatSession(bob)
        await session.open()

        result = await session.delete_chat(group_chat.id)

        assert result.error_code == "PERMISSION_DENIED"
        assert session.error == result.error
        assert session.directory.contains(group_chat.id)
        await session.close()

    async def test_close_tears_down_subscriptions(self, direct_chat, alice):
        session = ChatSession(alice)
        await session.open()
        await session.select_chat(direct_chat.id)

        await session.close()

        assert session.typing is None
        assert session.stream.chat_id is None
        assert session.directory._subscription is None
        assert session.stream._subscription is None
