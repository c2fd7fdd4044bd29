"""
Tests for the realtime pub/sub layer.

Runs against the in-memory channel layer configured for tests.
"""

import pytest

from chat.realtime import (
    CHANGE_MESSAGE_TYPE,
    ChangeEvent,
    ChangeType,
    RealtimeHub,
    Topic,
    TopicKind,
)
from chat.tests.helpers import settle, wait_until


def _event(chat_id=1, change=ChangeType.INSERT, **new):
    return ChangeEvent(
        topic=Topic.messages_for_chat(chat_id),
        change=change,
        table="chat_message",
        new={"id": 1, "chat_id": chat_id, **new},
    )


# =============================================================================
# Topics and events
# =============================================================================


class TestTopic:
    """Tests for Topic naming."""

    def test_group_names(self):
        assert Topic.messages_for_chat(7).group_name == "realtime.messages.7"
        assert Topic.typing_for_chat(7).group_name == "realtime.typing.7"
        assert Topic.memberships_for_user(3).group_name == "realtime.memberships.3"

    def test_topics_compare_by_value(self):
        assert Topic.messages_for_chat("7") == Topic(TopicKind.MESSAGES, 7)
        assert Topic.messages_for_chat(7) != Topic.typing_for_chat(7)


class TestChangeEvent:
    """Tests for the channel layer encoding of events."""

    def test_message_encoding(self):
        message = _event(content="hi").to_message()

        assert message["type"] == CHANGE_MESSAGE_TYPE
        assert message["topic"] == "messages"
        assert message["change"] == "INSERT"
        assert ChangeEvent.from_message(message) == _event(content="hi")


# =============================================================================
# Subscriptions
# =============================================================================


@pytest.mark.asyncio
class TestSubscription:
    """
    Tests for RealtimeHub.subscribe() / publish().

    Verifies:
    - Subscribers receive events of their topic in publish order
    - Other topics are not delivered
    - Unsubscribing stops delivery
    """

    async def test_receives_events_in_order(self):
        received = []
        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), received.append)

        for index in range(3):
            await RealtimeHub.publish(_event(content=f"m{index}"))

        await wait_until(lambda: len(received) == 3)
        assert [event.new["content"] for event in received] == ["m0", "m1", "m2"]
        await subscription.unsubscribe()

    async def test_other_topics_are_not_delivered(self):
        received = []
        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), received.append)

        await RealtimeHub.publish(_event(chat_id=2))
        await RealtimeHub.publish(_event(chat_id=1))

        await wait_until(lambda: len(received) == 1)
        await settle()
        assert [event.topic.key for event in received] == [1]
        await subscription.unsubscribe()

    async def test_async_handlers_are_awaited(self):
        received = []

        async def handler(event):
            received.append(event.change)

        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), handler)
        await RealtimeHub.publish(_event(change=ChangeType.UPDATE))

        await wait_until(lambda: received == [ChangeType.UPDATE])
        await subscription.unsubscribe()

    async def test_unsubscribe_stops_delivery(self):
        received = []
        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), received.append)

        await subscription.unsubscribe()
        await RealtimeHub.publish(_event())
        await settle()

        assert received == []
        assert subscription.active is False

    async def test_unsubscribe_twice_is_harmless(self):
        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), lambda event: None)

        await subscription.unsubscribe()
        await subscription.unsubscribe()

        assert subscription.active is False

    async def test_context_manager_unsubscribes(self):
        received = []

        async with await RealtimeHub.subscribe(Topic.typing_for_chat(1), received.append) as subscription:
            assert subscription.active is True

        assert subscription.active is False

    async def test_failing_handler_keeps_subscription_alive(self):
        received = []

        def handler(event):
            if event.new["content"] == "boom":
                raise ValueError("handler bug")
            received.append(event)

        subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(1), handler)
        await RealtimeHub.publish(_event(content="boom"))
        await RealtimeHub.publish(_event(content="fine"))

        await wait_until(lambda: len(received) == 1)
        assert received[0].new["content"] == "fine"
        await subscription.unsubscribe()


# =============================================================================
# Publishing failures
# =============================================================================


class TestPublishFailures:
    """Realtime delivery never raises to the writer."""

    def test_publish_sync_swallows_layer_errors(self, mocker):
        layer = mocker.Mock()
        layer.group_send = mocker.AsyncMock(side_effect=ConnectionError("redis down"))
        mocker.patch("chat.realtime.get_channel_layer", return_value=layer)

        RealtimeHub.publish_sync(_event())

        layer.group_send.assert_awaited_once()

    def test_publish_without_layer_is_dropped(self, mocker):
        mocker.patch("chat.realtime.get_channel_layer", return_value=None)

        RealtimeHub.publish_sync(_event())
