"""
Typed realtime pub/sub over the Channels layer.

Row changes on chat tables are published as ChangeEvent objects to a Topic.
Each Topic maps to one channel layer group; subscribers receive every event
published to their topic after they subscribed, in publish order.

Topics:
    messages_for_chat(chat_id)     Message INSERT / UPDATE / DELETE
    typing_for_chat(chat_id)       TypingSignal INSERT
    memberships_for_user(user_id)  ChatMember INSERT / DELETE

Usage:
    from chat.realtime import RealtimeHub, Topic

    async def on_change(event):
        print(event.change, event.new)

    subscription = await RealtimeHub.subscribe(Topic.messages_for_chat(7), on_change)
    ...
    await subscription.unsubscribe()

    # or scoped:
    async with await RealtimeHub.subscribe(topic, on_change):
        ...

Delivery is best-effort: a missing channel layer or a failed group_send is
logged, never raised to the writer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from typing import Any

    ChangeHandler = Callable[["ChangeEvent"], Awaitable[None] | None]

logger = logging.getLogger(__name__)

# Channel layer message type; consumers handle it as realtime_change()
CHANGE_MESSAGE_TYPE = "realtime.change"


class TopicKind(str, Enum):
    MESSAGES = "messages"
    TYPING = "typing"
    MEMBERSHIPS = "memberships"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class Topic:
    """
    A subscription scope: one table filtered by one foreign key value.

    Attributes:
        kind: Which table the topic carries
        key: chat id (messages, typing) or user id (memberships)
    """

    kind: TopicKind
    key: int

    @classmethod
    def messages_for_chat(cls, chat_id: int) -> Topic:
        return cls(TopicKind.MESSAGES, int(chat_id))

    @classmethod
    def typing_for_chat(cls, chat_id: int) -> Topic:
        return cls(TopicKind.TYPING, int(chat_id))

    @classmethod
    def memberships_for_user(cls, user_id: int) -> Topic:
        return cls(TopicKind.MEMBERSHIPS, int(user_id))

    @property
    def group_name(self) -> str:
        """Channel layer group name (ASCII, dots allowed)."""
        return f"realtime.{self.kind.value}.{self.key}"


@dataclass(frozen=True)
class ChangeEvent:
    """
    One row change delivered to subscribers of a topic.

    Attributes:
        topic: Topic the event was published to
        change: INSERT, UPDATE or DELETE
        table: Database table of the changed row
        new: Row after the change (empty for DELETE)
        old: Identifying columns of the row before the change
    """

    topic: Topic
    change: ChangeType
    table: str
    new: dict[str, Any] = field(default_factory=dict)
    old: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        """Encode as a channel layer message (plain, msgpack-safe types)."""
        return {
            "type": CHANGE_MESSAGE_TYPE,
            "topic": self.topic.kind.value,
            "key": self.topic.key,
            "change": self.change.value,
            "table": self.table,
            "new": dict(self.new),
            "old": dict(self.old),
        }

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> ChangeEvent:
        return cls(
            topic=Topic(TopicKind(message["topic"]), int(message["key"])),
            change=ChangeType(message["change"]),
            table=message["table"],
            new=dict(message.get("new") or {}),
            old=dict(message.get("old") or {}),
        )


class Subscription:
    """
    A live subscription to one topic.

    Owns a private channel on the layer, joined to the topic's group, and a
    reader task that hands each received event to the handler. Handler
    exceptions are logged; the subscription keeps running.

    The subscription must be torn down with unsubscribe() (or by leaving
    its async context) once the subscriber is no longer interested.
    """

    def __init__(self, topic: Topic, handler: ChangeHandler):
        self.topic = topic
        self._handler = handler
        self._layer = None
        self._task: asyncio.Task | None = None
        self.channel_name: str | None = None
        self.active = False

    async def start(self) -> Subscription:
        self._layer = get_channel_layer()
        if self._layer is None:
            raise RuntimeError("No channel layer configured (CHANNEL_LAYERS)")

        self.channel_name = await self._layer.new_channel()
        await self._layer.group_add(self.topic.group_name, self.channel_name)
        self.active = True
        self._task = asyncio.create_task(self._read())
        logger.debug(f"Subscribed {self.channel_name} to {self.topic.group_name}")
        return self

    async def _read(self) -> None:
        while True:
            message = await self._layer.receive(self.channel_name)
            if message.get("type") != CHANGE_MESSAGE_TYPE:
                continue
            try:
                result = self._handler(ChangeEvent.from_message(message))
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Handler failed for event on {self.topic.group_name}")

    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if not self.active:
            return
        self.active = False

        await self._layer.group_discard(self.topic.group_name, self.channel_name)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug(f"Unsubscribed {self.channel_name} from {self.topic.group_name}")

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.unsubscribe()


class RealtimeHub:
    """
    Entry point for publishing and subscribing to row-change events.

    Methods:
        publish: Send an event to its topic (async callers)
        publish_sync: Same, for sync callers (signal handlers, services)
        subscribe: Start a Subscription for a topic
    """

    @staticmethod
    async def publish(event: ChangeEvent) -> None:
        layer = get_channel_layer()
        if layer is None:
            logger.warning(f"No channel layer; dropped {event.change.value} on {event.topic.group_name}")
            return
        await layer.group_send(event.topic.group_name, event.to_message())

    @classmethod
    def publish_sync(cls, event: ChangeEvent) -> None:
        """
        Publish from synchronous code.

        Errors are logged and swallowed: realtime delivery never fails the
        database write that produced the event.
        """
        try:
            async_to_sync(cls.publish)(event)
        except Exception:
            logger.exception(
                f"Failed to publish {event.change.value} {event.table} on {event.topic.group_name}"
            )

    @staticmethod
    async def subscribe(topic: Topic, handler: ChangeHandler) -> Subscription:
        return await Subscription(topic, handler).start()
