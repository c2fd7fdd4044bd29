"""
Client-side chat state kept in sync with the realtime layer.

Each object below holds the local view one connected user has of part of
the chat system, loads it through the service layer and keeps it current
from realtime events. All methods are coroutines meant to run on a single
event loop; service calls are run through database_sync_to_async, and store
outages come back as SERVICE_UNAVAILABLE failures instead of raising.

Classes:
    MessageView: Immutable-by-convention local copy of a message row
    ChatDirectory: The user's chat list (memberships topic)
    MessageStream: Messages of the selected chat (messages topic)
    TypingObserver: "Someone is typing" indicator (typing topic)
    ChatSession: Composition of the three for one user

Reconciliation:
    The same row can reach local state twice: once from the caller's own
    successful write and once as the realtime echo. Inserts are merged by
    id, updates only replace content/updated_at, and messages stay ordered
    by (created_at, id) whatever the arrival order.

Every subscription is torn down explicitly (stop / switch_chat / close).
Failed calls set `error` and leave already loaded state untouched.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from channels.db import database_sync_to_async
from django.db import DatabaseError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.exceptions import ExternalServiceError
from core.services import ServiceResult

from chat.constants import TYPING_CONFIG
from chat.realtime import ChangeType, RealtimeHub, Topic
from chat.serializers import MessageRecordSerializer, to_record
from chat.services import ChatService, DirectoryService, MessageService, TypingService

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import Any

    from django.core.files import File

    from authentication.models import User
    from chat.realtime import ChangeEvent, Subscription

logger = logging.getLogger(__name__)


def _as_datetime(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_datetime(value)


@dataclass
class MessageView:
    """Local copy of a message row."""

    id: int
    chat_id: int
    user_id: int
    content: str
    file_url: str | None
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> MessageView:
        return cls(
            id=record["id"],
            chat_id=record["chat_id"],
            user_id=record["user_id"],
            content=record.get("content") or "",
            file_url=record.get("file_url"),
            created_at=_as_datetime(record["created_at"]),
            updated_at=_as_datetime(record.get("updated_at")),
        )

    @classmethod
    def from_message(cls, message) -> MessageView:
        return cls.from_record(to_record(MessageRecordSerializer, message))

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.id)


def _local_failure(error: str, error_code: str) -> ServiceResult:
    return ServiceResult.failure(error, error_code=error_code)


async def _call(func, *args, **kwargs) -> ServiceResult:
    """
    Run a sync service call off the event loop.

    Store and object storage outages come back as a SERVICE_UNAVAILABLE
    failure so callers can keep their state and retry.
    """
    try:
        return await database_sync_to_async(func)(*args, **kwargs)
    except (DatabaseError, ExternalServiceError) as e:
        logger.error(f"{getattr(func, '__qualname__', func)} failed: {e}", exc_info=True)
        return ServiceResult.from_exception(e, "SERVICE_UNAVAILABLE")


# =============================================================================
# Chat directory
# =============================================================================


class ChatDirectory:
    """
    The list of chats a user belongs to.

    Attributes:
        chats: Directory entries (see DirectoryService.list_chats)
        error: Last error message, None after a successful load
    """

    def __init__(self, user: User):
        self.user = user
        self.chats: list[dict[str, Any]] = []
        self.error: str | None = None
        self.loading = False
        self._subscription: Subscription | None = None

    def contains(self, chat_id: int) -> bool:
        return any(entry["id"] == chat_id for entry in self.chats)

    def add(self, entry: dict[str, Any]) -> None:
        """Append a directory entry unless its chat is already listed."""
        if not self.contains(entry["id"]):
            self.chats.append(entry)

    def remove(self, chat_id: int) -> None:
        self.chats = [entry for entry in self.chats if entry["id"] != chat_id]

    async def load(self) -> ServiceResult:
        self.loading = True
        try:
            result = await _call(DirectoryService.list_chats, self.user)
        finally:
            self.loading = False

        if not result.success:
            self.error = result.error
            return result

        loaded = list(result.data)
        loaded_ids = {entry["id"] for entry in loaded}
        # Keep chats that arrived over realtime while the load was in flight
        loaded.extend(entry for entry in self.chats if entry["id"] not in loaded_ids)
        self.chats = loaded
        self.error = None
        return result

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await RealtimeHub.subscribe(
                Topic.memberships_for_user(self.user.id),
                self._on_change,
            )

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    async def _on_change(self, event: ChangeEvent) -> None:
        if event.change == ChangeType.INSERT:
            chat_id = event.new.get("chat_id")
            if chat_id is None or self.contains(chat_id):
                return
            result = await _call(DirectoryService.summarize_chat, chat_id, self.user)
            if result.success:
                self.add(result.data)
            else:
                logger.warning(f"Could not load chat {chat_id} for user {self.user.id}: {result.error}")

        elif event.change == ChangeType.DELETE:
            if event.old.get("user_id") == self.user.id:
                self.remove(event.old.get("chat_id"))


# =============================================================================
# Message stream
# =============================================================================


class MessageStream:
    """
    Messages of one chat, ordered by (created_at, id).

    Attributes:
        chat_id: Selected chat (None when no chat is selected)
        messages: Local message rows
        error: Last error message
    """

    def __init__(self, user: User, chat_id: int | None = None):
        self.user = user
        self.chat_id = chat_id
        self.messages: list[MessageView] = []
        self.error: str | None = None
        self.loading = False
        self._subscription: Subscription | None = None

    def find(self, message_id: int) -> MessageView | None:
        return next((m for m in self.messages if m.id == message_id), None)

    # -- local state --------------------------------------------------------

    def apply_insert(self, view: MessageView) -> None:
        if view.chat_id != self.chat_id or self.find(view.id) is not None:
            return
        bisect.insort(self.messages, view, key=lambda m: m.sort_key)

    def apply_update(self, view: MessageView) -> None:
        current = self.find(view.id)
        if current is None:
            return
        current.content = view.content
        current.updated_at = view.updated_at

    def apply_delete(self, message_id: int) -> None:
        self.messages = [m for m in self.messages if m.id != message_id]

    # -- service calls ------------------------------------------------------

    @staticmethod
    def _fetch(chat_id: int, user: User) -> ServiceResult[list[MessageView]]:
        result = MessageService.list_messages(chat_id, user)
        return result.map(lambda messages: [MessageView.from_message(m) for m in messages])

    @staticmethod
    def _create(chat_id: int, user: User, content: str, file: File | None) -> ServiceResult[MessageView]:
        return MessageService.send_message(chat_id, user, content=content, file=file).map(MessageView.from_message)

    @staticmethod
    def _edit(message_id: int, user: User, content: str) -> ServiceResult[MessageView]:
        return MessageService.edit_message(message_id, user, content).map(MessageView.from_message)

    async def load(self) -> ServiceResult:
        if self.chat_id is None:
            self.messages = []
            return ServiceResult.success([])

        chat_id = self.chat_id
        self.loading = True
        try:
            result = await _call(self._fetch, chat_id, self.user)
        finally:
            self.loading = False

        if not result.success:
            self.error = result.error
            return result
        if chat_id != self.chat_id:
            # Selection changed while loading
            return result

        loaded = sorted(result.data, key=lambda m: m.sort_key)
        # Keep rows that arrived over realtime while the load was in flight
        for view in self.messages:
            if not any(m.id == view.id for m in loaded):
                bisect.insort(loaded, view, key=lambda m: m.sort_key)
        self.messages = loaded
        self.error = None
        return result

    async def send(self, content: str, file: File | None = None, editing_id: int | None = None) -> ServiceResult:
        """
        Send a new message, or edit one when editing_id is given.

        Validation happens locally before any call: an empty send is
        EMPTY_MESSAGE, editing a known message of another user is
        NOT_AUTHOR.
        """
        text = (content or "").strip()

        if editing_id is not None:
            local = self.find(editing_id)
            if local is not None and local.user_id != self.user.id:
                result = _local_failure("You can only change your own messages", "NOT_AUTHOR")
            elif not text and not (local and local.file_url):
                result = _local_failure("Message must have content or a file", "EMPTY_MESSAGE")
            else:
                result = await _call(self._edit, editing_id, self.user, text)
                if result.success:
                    self.apply_update(result.data)
        elif not text and file is None:
            result = _local_failure("Message must have content or a file", "EMPTY_MESSAGE")
        elif self.chat_id is None:
            result = _local_failure("No chat selected", "NO_CHAT_SELECTED")
        else:
            result = await _call(self._create, self.chat_id, self.user, text, file)
            if result.success:
                self.apply_insert(result.data)

        self.error = None if result.success else result.error
        return result

    async def delete(self, message_id: int) -> ServiceResult:
        local = self.find(message_id)
        if local is not None and local.user_id != self.user.id:
            result = _local_failure("You can only change your own messages", "NOT_AUTHOR")
        else:
            result = await _call(MessageService.delete_message, message_id, self.user)
            if result.success:
                self.apply_delete(message_id)

        self.error = None if result.success else result.error
        return result

    # -- realtime -----------------------------------------------------------

    async def start(self) -> None:
        if self.chat_id is None or self._subscription is not None:
            return
        self._subscription = await RealtimeHub.subscribe(
            Topic.messages_for_chat(self.chat_id),
            self._on_change,
        )

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None

    def _on_change(self, event: ChangeEvent) -> None:
        if event.topic.key != self.chat_id:
            return
        if event.change == ChangeType.INSERT:
            self.apply_insert(MessageView.from_record(event.new))
        elif event.change == ChangeType.UPDATE:
            self.apply_update(MessageView.from_record(event.new))
        elif event.change == ChangeType.DELETE:
            self.apply_delete(event.old.get("id"))

    async def switch_chat(self, chat_id: int | None) -> ServiceResult:
        """Tear down the current subscription, then follow chat_id."""
        await self.stop()
        self.chat_id = chat_id
        self.messages = []
        self.error = None
        await self.start()
        return await self.load()

    async def clear(self) -> None:
        await self.stop()
        self.chat_id = None
        self.messages = []
        self.error = None


# =============================================================================
# Typing indicator
# =============================================================================


class TypingObserver:
    """
    Shows that another member is typing in a chat.

    Each signal from another user turns the indicator on and restarts a
    window_seconds timer; when the timer fires without a newer signal the
    indicator turns off. Signals older than stale_after_seconds when they
    arrive are ignored.
    """

    def __init__(
        self,
        user: User,
        chat_id: int,
        window_seconds: float = TYPING_CONFIG.INDICATOR_WINDOW_SECONDS,
        stale_after_seconds: float = TYPING_CONFIG.STALE_AFTER_SECONDS,
    ):
        self.user = user
        self.chat_id = chat_id
        self.window_seconds = window_seconds
        self.stale_after_seconds = stale_after_seconds
        self.is_typing = False
        self.typing_user_id: int | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._subscription: Subscription | None = None

    async def start(self) -> None:
        if self._subscription is None:
            self._subscription = await RealtimeHub.subscribe(
                Topic.typing_for_chat(self.chat_id),
                self._on_change,
            )

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        self._clear()

    def _on_change(self, event: ChangeEvent) -> None:
        if event.change != ChangeType.INSERT:
            return
        user_id = event.new.get("user_id")
        if user_id == self.user.id:
            return

        created_at = _as_datetime(event.new.get("created_at"))
        if created_at is not None:
            age = (timezone.now() - created_at).total_seconds()
            if age > self.stale_after_seconds:
                logger.debug(f"Ignored typing signal from {user_id} ({age:.1f}s old)")
                return

        self.is_typing = True
        self.typing_user_id = user_id
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.window_seconds, self._clear)

    def _clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.is_typing = False
        self.typing_user_id = None

    async def notify_typing(self) -> ServiceResult:
        """Tell the other members that this user is typing."""
        return await _call(TypingService.record, self.chat_id, self.user)


# =============================================================================
# Session
# =============================================================================


class ChatSession:
    """
    Everything one connected user sees: directory, selected chat, typing.

    Usage:
        session = ChatSession(user)
        await session.open()
        await session.select_chat(chat_id)
        await session.stream.send("hello")
        await session.close()
    """

    def __init__(self, user: User):
        self.user = user
        self.directory = ChatDirectory(user)
        self.stream = MessageStream(user)
        self.typing: TypingObserver | None = None
        self.error: str | None = None

    @property
    def selected_chat_id(self) -> int | None:
        return self.stream.chat_id

    async def open(self) -> ServiceResult:
        await self.directory.start()
        return await self.directory.load()

    async def select_chat(self, chat_id: int | None) -> ServiceResult:
        if self.typing is not None:
            await self.typing.stop()
            self.typing = None

        result = await self.stream.switch_chat(chat_id)
        if chat_id is not None:
            self.typing = TypingObserver(self.user, chat_id)
            await self.typing.start()
        return result

    async def start_direct_chat(self, other_user: User) -> ServiceResult:
        """Open (creating if needed) the 1:1 chat with other_user and select it."""
        result = await _call(ChatService.create_direct, self.user, other_user)
        if not result.success:
            self.error = result.error
            return result
        await self._show_chat(result.data.id)
        return result

    async def create_group(
        self,
        name: str,
        description: str = "",
        invited_user_ids=(),
        avatar: File | None = None,
    ) -> ServiceResult:
        result = await _call(
            ChatService.create_group,
            self.user,
            name,
            description=description,
            invited_user_ids=invited_user_ids,
            avatar=avatar,
        )
        if not result.success:
            self.error = result.error
            return result
        await self._show_chat(result.data.id)
        return result

    async def _show_chat(self, chat_id: int) -> None:
        if not self.directory.contains(chat_id):
            summary = await _call(DirectoryService.summarize_chat, chat_id, self.user)
            if summary.success:
                self.directory.add(summary.data)
        await self.select_chat(chat_id)
        self.error = None

    async def delete_chat(self, chat_id: int) -> ServiceResult:
        """
        Delete a chat; on success drop it from the directory and clear the
        message list if it was selected.
        """
        result = await _call(ChatService.delete_chat, chat_id, self.user)
        if not result.success:
            self.error = result.error
            return result

        self.directory.remove(chat_id)
        if self.selected_chat_id == chat_id:
            await self.select_chat(None)
        self.error = None
        return result

    async def close(self) -> None:
        if self.typing is not None:
            await self.typing.stop()
            self.typing = None
        await self.stream.clear()
        await self.directory.stop()
