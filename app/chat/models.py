"""
Chat system models.

This module defines the data models for the chat system supporting:
- 1:1 chats between exactly two users
- Group chats with a single creator who is the sole admin

Models:
    Chat: Container for messages between members
    DirectChatPair: Helper for enforcing uniqueness of 1:1 chats
    ChatMember: A user's membership in a chat
    Message: One piece of content (text and/or file) posted to a chat
    TypingSignal: Ephemeral advisory "user is typing" row
    ChatDeletion: Saga record tracking an ordered, cascading chat deletion

Design Decisions:
    - 1:1 chats always have exactly two members; membership is immutable and
      DirectChatPair PROTECTs both users, so deleting a user cannot strand a
      1:1 chat with one member (group memberships cascade with the user)
    - Rows referencing a chat use PROTECT, so the chat row can only be removed
      after its dependents (typing -> notifications -> messages -> members)
    - Messages are hard deleted; the realtime DELETE event is the only trace
    - Message.updated_at stays NULL until the first edit and never reorders
      the message; display order is (created_at, id)
    - ChatDeletion stores chat_id as a plain integer so it outlives the chat
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class Chat(BaseModel):
    """
    A conversation between two or more users.

    Chat Kinds:
        1:1 (is_group=False): Exactly 2 members, no name, no admin.
                              Unique per user pair (enforced via DirectChatPair).

        Group (is_group=True): 1+ members. The creator (created_by) is the
                               sole admin: only they may rename, manage
                               members, or delete the group.

    Fields:
        is_group: Whether this is a group chat
        group_name: Display name for group chats (empty for 1:1)
        group_description: Optional description for group chats
        group_avatar_url: Public URL of the group avatar in object storage
        created_by: Creator and admin of a group (null for 1:1 chats)
    """

    is_group = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether this is a group chat",
    )

    group_name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name of the group (empty for 1:1 chats)",
    )

    group_description = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Description of the group (empty for 1:1 chats)",
    )

    group_avatar_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Public URL of the group avatar",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_chats",
        help_text="Creator and sole admin of a group chat (null for 1:1)",
    )

    class Meta:
        db_table = "chat_chat"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        if not self.is_group:
            return f"Direct({self.pk})"
        if self.group_name:
            return f"Group: {self.group_name}"
        return f"Group({self.pk})"

    def is_admin(self, user: User) -> bool:
        """Check if user administers this chat (group creator only)."""
        return self.is_group and self.created_by_id == user.id

    def has_member(self, user_id) -> bool:
        """Check if user_id currently belongs to this chat."""
        return self.members.filter(user_id=user_id).exists()


class DirectChatPair(models.Model):
    """
    Enforces uniqueness of 1:1 chats between two users.

    Stores the user pair in canonical order (lower user_id first) so that
    whoever starts the conversation, there is only one chat per pair.
    Cascades with its chat row. The users are PROTECTed: a user with a 1:1
    chat cannot be deleted until that chat is deleted.
    """

    chat = models.OneToOneField(
        Chat,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="direct_pair",
        help_text="The 1:1 chat this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="User with lower ID in this pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="User with higher ID in this pair",
    )

    class Meta:
        db_table = "chat_direct_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_direct_chat_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="direct_pair_user_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"DirectPair({self.user_lower_id}, {self.user_higher_id})"


class ChatMember(models.Model):
    """
    A user's membership in a chat.

    Created when a chat is created or a member is added; destroyed when the
    member leaves, is removed, or the chat is deleted.

    Constraints:
        - UniqueConstraint(chat, user): one membership per pair
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.PROTECT,
        related_name="members",
        help_text="Chat this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_memberships",
        help_text="Member user",
    )

    joined_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user joined this chat",
    )

    class Meta:
        db_table = "chat_member"
        ordering = ["joined_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["chat", "user"],
                name="unique_chat_member",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "chat"], name="chat_member_user_idx"),
        ]

    def __str__(self) -> str:
        return f"ChatMember: {self.user_id} in {self.chat_id}"


class Message(models.Model):
    """
    A message within a chat.

    Ownership:
        Created and edited exclusively by its author. Edits touch only
        content and updated_at; created_at is immutable.

    Fields:
        chat: Chat this message belongs to
        user: Author
        content: Message text (may be empty when file_url is set)
        file_url: Public URL of an attached file
        created_at: When the message was sent (display order key)
        updated_at: When the message was last edited (null if never)
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.PROTECT,
        related_name="messages",
        help_text="Chat this message belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_messages",
        help_text="Author of this message",
    )

    content = models.TextField(
        blank=True,
        default="",
        help_text="Message text (empty allowed when a file is attached)",
    )

    file_url = models.URLField(
        max_length=500,
        null=True,
        blank=True,
        help_text="Public URL of the attached file",
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        editable=False,
        help_text="When the message was sent",
    )

    updated_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the message was last edited (null if never edited)",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(
                fields=["chat", "created_at", "id"],
                name="chat_msg_chat_order_idx",
            ),
        ]

    def __str__(self) -> str:
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        if not preview and self.file_url:
            preview = "[attachment]"
        return f"User {self.user_id}: {preview}"

    @property
    def is_edited(self) -> bool:
        return self.updated_at is not None


class TypingSignal(models.Model):
    """
    Ephemeral advisory "user is typing" row.

    One row is written per keystroke-triggered call. Rows are never
    authoritative: observers ignore stale ones and a periodic task purges
    them (see TYPING_CONFIG).
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.PROTECT,
        related_name="typing_signals",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
    )

    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
    )

    class Meta:
        db_table = "chat_typing_signal"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"Typing: {self.user_id} in {self.chat_id}"


class DeletionState(models.TextChoices):
    """
    States of a chat deletion saga.

    State Flow:
        REQUESTED -> AUTHORIZING -> DELETING_STORAGE -> DELETING_DEPENDENTS
                  -> DELETING_CHAT_ROW -> DONE

    Retry Flow (once):
        DELETING_CHAT_ROW -> DELETING_DEPENDENTS -> DELETING_CHAT_ROW

    Terminal states:
        DONE: chat and all dependents removed
        FAILED: chat row still present after the retry; cleanup incomplete
        REJECTED: authorization denied; zero deletions performed
    """

    REQUESTED = "requested", "Requested"
    AUTHORIZING = "authorizing", "Authorizing"
    DELETING_STORAGE = "deleting_storage", "Deleting stored files"
    DELETING_DEPENDENTS = "deleting_dependents", "Deleting dependent rows"
    DELETING_CHAT_ROW = "deleting_chat_row", "Deleting chat row"
    DONE = "done", "Done"
    FAILED = "failed", "Failed"
    REJECTED = "rejected", "Rejected"


IN_PROGRESS_DELETION_STATES = (
    DeletionState.DELETING_STORAGE,
    DeletionState.DELETING_DEPENDENTS,
    DeletionState.DELETING_CHAT_ROW,
)


class ChatDeletion(BaseModel):
    """
    Persistent record of one chat deletion request.

    The record is the in-progress marker of a multi-step, non-transactional
    deletion: every state change is saved, so a deletion interrupted by a
    crash can be found and resumed by the periodic resume task.

    Fields:
        chat_id: Id of the chat being deleted (plain integer, outlives the chat)
        requested_by: User who asked for the deletion
        state: Current DeletionState (django-fsm)
        attempts: Number of ordered-delete passes started
        storage_failures: Number of files that could not be removed
        failure_reason: Error detail for REJECTED / FAILED
        completed_at: When a terminal state was reached
    """

    chat_id = models.BigIntegerField(
        db_index=True,
        help_text="Id of the chat being deleted",
    )

    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    state = FSMField(
        default=DeletionState.REQUESTED,
        choices=DeletionState.choices,
        db_index=True,
    )

    attempts = models.PositiveSmallIntegerField(default=0)

    storage_failures = models.PositiveIntegerField(default=0)

    failure_reason = models.TextField(blank=True, default="")

    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "chat_deletion"
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"ChatDeletion(chat={self.chat_id}, {self.state})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=DeletionState.REQUESTED,
        target=DeletionState.AUTHORIZING,
    )
    def authorize(self):
        pass

    @transition(
        field=state,
        source=DeletionState.AUTHORIZING,
        target=DeletionState.REJECTED,
    )
    def reject(self, reason: str):
        self.failure_reason = reason
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=DeletionState.AUTHORIZING,
        target=DeletionState.DELETING_STORAGE,
    )
    def start_storage_cleanup(self):
        pass

    @transition(
        field=state,
        source=[DeletionState.DELETING_STORAGE, DeletionState.DELETING_CHAT_ROW],
        target=DeletionState.DELETING_DEPENDENTS,
    )
    def start_dependents(self):
        """Begin an ordered-delete pass (first attempt or the retry)."""
        self.attempts += 1

    @transition(
        field=state,
        source=DeletionState.DELETING_DEPENDENTS,
        target=DeletionState.DELETING_CHAT_ROW,
    )
    def start_chat_row(self):
        pass

    @transition(
        field=state,
        source=DeletionState.DELETING_CHAT_ROW,
        target=DeletionState.DONE,
    )
    def complete(self):
        self.failure_reason = ""
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=DeletionState.DELETING_CHAT_ROW,
        target=DeletionState.FAILED,
    )
    def fail(self, reason: str):
        self.failure_reason = reason
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=list(IN_PROGRESS_DELETION_STATES),
        target=DeletionState.DELETING_DEPENDENTS,
    )
    def resume(self):
        """Restart an interrupted saga with a fresh attempt budget."""
        self.attempts = 1

    @property
    def is_terminal(self) -> bool:
        return self.state in (
            DeletionState.DONE,
            DeletionState.FAILED,
            DeletionState.REJECTED,
        )
