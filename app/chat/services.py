"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on chats, memberships, messages and typing signals.

Services:
    ChatService: Chat lifecycle (create 1:1, create/update group, delete)
    MembershipService: Group membership management (add, remove, leave)
    MessageService: Message operations (list, send, edit, delete)
    TypingService: Typing signals (record, purge)
    DirectoryService: Chat listings and user pickers

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Unexpected failures raise exceptions
    - Message mutations are scoped to the author (user_id = current user)
    - Group administration is scoped to the creator (created_by = current user)
    - Object storage is best-effort on removal and all-or-nothing on upload

Usage:
    from chat.services import ChatService, MessageService

    result = ChatService.create_direct(user1, user2)
    if result.success:
        chat = result.data

    result = MessageService.send_message(chat.id, user1, content="Hello!")

    result = ChatService.delete_chat(chat.id, user1)
    deletion = result.data  # ChatDeletion, also on failure
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import DatabaseError, IntegrityError
from django.utils import timezone

from core.exceptions import ExternalServiceError
from core.services import BaseService, ServiceResult

from authentication.models import User
from chat.constants import DELETION_CONFIG, GROUP_CONFIG, MESSAGE_CONFIG, TYPING_CONFIG
from chat.models import (
    IN_PROGRESS_DELETION_STATES,
    Chat,
    ChatDeletion,
    ChatMember,
    DeletionState,
    DirectChatPair,
    Message,
    TypingSignal,
)
from chat.serializers import ChatSummarySerializer, MemberSerializer, UserCardSerializer
from chat.storage import ObjectStorage, group_avatar_path, message_file_path
from notifications.models import Notification
from notifications.services import NotificationFanout

if TYPE_CHECKING:
    from collections.abc import Iterable

    from django.core.files import File

logger = logging.getLogger(__name__)


def check_membership(chat_id: int, user: User) -> ServiceResult | None:
    """
    Verify that user belongs to chat_id.

    Returns:
        None when the user is a member, otherwise a failure result
        (CHAT_NOT_FOUND or NOT_PARTICIPANT).
    """
    if not Chat.objects.filter(id=chat_id).exists():
        return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
    if not ChatMember.objects.filter(chat_id=chat_id, user_id=user.id).exists():
        return ServiceResult.failure(
            "You are not a member of this chat",
            error_code="NOT_PARTICIPANT",
        )
    return None


def validate_avatar(avatar: File) -> ServiceResult | None:
    """Reject non-image or oversized group avatars before any upload."""
    content_type = getattr(avatar, "content_type", None) or mimetypes.guess_type(avatar.name or "")[0]
    if not content_type or not content_type.startswith(GROUP_CONFIG.AVATAR_CONTENT_TYPE_PREFIX):
        return ServiceResult.failure(
            "Group avatar must be an image",
            error_code="INVALID_AVATAR",
        )
    if avatar.size is not None and avatar.size > GROUP_CONFIG.AVATAR_MAX_BYTES:
        return ServiceResult.failure(
            "Group avatar must be 5MB or smaller",
            error_code="AVATAR_TOO_LARGE",
        )
    return None


class ChatService(BaseService):
    """
    Service for chat lifecycle operations.

    Methods:
        create_direct: Create or retrieve the 1:1 chat between two users
        create_group: Create a group chat with invited members
        update_group: Rename / redescribe a group (creator only)
        set_group_avatar: Replace a group's avatar (creator only)
        remove_group_avatar: Remove a group's avatar (creator only)
        delete_chat: Authorized, ordered, cascading deletion
        resume_deletion: Finish a deletion interrupted mid-way
    """

    # Dependents are removed in this order before the chat row itself
    DEPENDENT_DELETE_ORDER = (TypingSignal, Notification, Message, ChatMember)

    @classmethod
    def create_direct(
        cls,
        current_user: User,
        other_user: User,
    ) -> ServiceResult[Chat]:
        """
        Create or retrieve the 1:1 chat between two users.

        1:1 chats are unique per user pair. If one already exists it is
        returned instead of creating a duplicate.

        Implementation:
            1. Validate users are different and the other user is active
            2. Canonicalize order (lower user_id first)
            3. Look up existing DirectChatPair
            4. If not found, create Chat + pair + both members in a transaction
            5. If a concurrent request created the pair first, return theirs

        Error codes:
            SAME_USER: Cannot create a 1:1 chat with yourself
            USER_NOT_FOUND: Other user does not exist or is inactive
        """
        if other_user is None or not other_user.is_active:
            return ServiceResult.failure("User not found", error_code="USER_NOT_FOUND")

        if current_user.id == other_user.id:
            return ServiceResult.failure(
                "Cannot create a 1:1 chat with yourself",
                error_code="SAME_USER",
            )

        lower_id, higher_id = sorted((current_user.id, other_user.id))

        existing_pair = (
            DirectChatPair.objects.select_related("chat")
            .filter(user_lower_id=lower_id, user_higher_id=higher_id)
            .first()
        )
        if existing_pair is not None:
            cls.get_logger().debug(
                f"Found existing 1:1 chat {existing_pair.chat_id} "
                f"between users {lower_id} and {higher_id}"
            )
            return ServiceResult.success(existing_pair.chat)

        try:
            with cls.atomic():
                chat = Chat.objects.create(is_group=False)
                DirectChatPair.objects.create(
                    chat=chat,
                    user_lower_id=lower_id,
                    user_higher_id=higher_id,
                )
                ChatMember.objects.create(chat=chat, user=current_user)
                ChatMember.objects.create(chat=chat, user=other_user)
        except IntegrityError:
            existing_pair = (
                DirectChatPair.objects.select_related("chat")
                .filter(user_lower_id=lower_id, user_higher_id=higher_id)
                .first()
            )
            if existing_pair is None:
                raise
            return ServiceResult.success(existing_pair.chat)

        cls.get_logger().info(
            f"Created 1:1 chat {chat.id} between users {lower_id} and {higher_id}"
        )
        return ServiceResult.success(chat)

    @classmethod
    def create_group(
        cls,
        creator: User,
        name: str,
        description: str = "",
        invited_user_ids: Iterable[int] = (),
        avatar: File | None = None,
    ) -> ServiceResult[Chat]:
        """
        Create a group chat.

        The avatar (if any) is uploaded first; a failed upload aborts before
        any row is written. The chat row, the creator's membership and one
        membership per invited user are written in a single transaction, so
        the group is created with every requested member or not at all. If
        that transaction fails, the uploaded avatar is removed again.

        Args:
            creator: User creating the group (becomes its sole admin)
            name: Group name (required)
            description: Optional description
            invited_user_ids: Users to add besides the creator
            avatar: Optional image file (image/*, at most 5MB)

        Error codes:
            NAME_REQUIRED, NAME_TOO_LONG, DESCRIPTION_TOO_LONG
            INVALID_AVATAR, AVATAR_TOO_LARGE, AVATAR_UPLOAD_FAILED
            USER_NOT_FOUND: An invited user does not exist or is inactive
            GROUP_CREATE_FAILED: Rows could not be written (nothing kept)
        """
        name = (name or "").strip()
        description = (description or "").strip()

        if not name:
            return ServiceResult.failure("Group name is required", error_code="NAME_REQUIRED")
        if len(name) > GROUP_CONFIG.MAX_NAME_LENGTH:
            return ServiceResult.failure(
                f"Group name cannot exceed {GROUP_CONFIG.MAX_NAME_LENGTH} characters",
                error_code="NAME_TOO_LONG",
            )
        if len(description) > GROUP_CONFIG.MAX_DESCRIPTION_LENGTH:
            return ServiceResult.failure(
                f"Description cannot exceed {GROUP_CONFIG.MAX_DESCRIPTION_LENGTH} characters",
                error_code="DESCRIPTION_TOO_LONG",
            )
        if avatar is not None:
            invalid = validate_avatar(avatar)
            if invalid:
                return invalid

        invited_ids = []
        for user_id in invited_user_ids:
            if user_id != creator.id and user_id not in invited_ids:
                invited_ids.append(user_id)

        found_ids = set(
            User.objects.filter(id__in=invited_ids, is_active=True).values_list("id", flat=True)
        )
        missing = [user_id for user_id in invited_ids if user_id not in found_ids]
        if missing:
            return ServiceResult.failure(
                "Some invited users were not found",
                error_code="USER_NOT_FOUND",
                errors={"invited_user_ids": [str(user_id) for user_id in missing]},
            )

        avatar_path = None
        avatar_url = ""
        if avatar is not None:
            try:
                avatar_path = ObjectStorage.upload(group_avatar_path(avatar.name), avatar)
            except ExternalServiceError as e:
                return cls.handle_exception(
                    e,
                    "Group avatar upload failed",
                    log_level=logging.WARNING,
                    error_code="AVATAR_UPLOAD_FAILED",
                )
            avatar_url = ObjectStorage.get_public_url(avatar_path)

        try:
            with cls.atomic():
                chat = Chat.objects.create(
                    is_group=True,
                    group_name=name,
                    group_description=description,
                    group_avatar_url=avatar_url,
                    created_by=creator,
                )
                ChatMember.objects.create(chat=chat, user=creator)
                for user_id in invited_ids:
                    ChatMember.objects.create(chat=chat, user_id=user_id)
        except DatabaseError as e:
            if avatar_path:
                ObjectStorage.remove([avatar_path])
            return cls.handle_exception(
                e,
                f"Group creation by user {creator.id} failed",
                error_code="GROUP_CREATE_FAILED",
            )

        cls.get_logger().info(
            f"Created group chat {chat.id} by user {creator.id} "
            f"with {len(invited_ids) + 1} members"
        )
        return ServiceResult.success(chat)

    @classmethod
    def _get_administered_group(cls, chat_id: int, actor: User) -> tuple[Chat | None, ServiceResult | None]:
        chat = Chat.objects.filter(id=chat_id).first()
        if chat is None:
            return None, ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
        if not chat.is_group:
            return None, ServiceResult.failure(
                "This operation is only available for group chats",
                error_code="NOT_GROUP",
            )
        if not chat.is_admin(actor):
            return None, ServiceResult.failure(
                "Only the group creator can do this",
                error_code="PERMISSION_DENIED",
            )
        return chat, None

    @classmethod
    def update_group(
        cls,
        chat_id: int,
        actor: User,
        name: str | None = None,
        description: str | None = None,
    ) -> ServiceResult[Chat]:
        """
        Update a group's name and/or description (creator only).

        Error codes:
            CHAT_NOT_FOUND, NOT_GROUP, PERMISSION_DENIED
            NAME_REQUIRED, NAME_TOO_LONG, DESCRIPTION_TOO_LONG
        """
        chat, error = cls._get_administered_group(chat_id, actor)
        if error:
            return error

        update_fields = []
        if name is not None:
            name = name.strip()
            if not name:
                return ServiceResult.failure("Group name is required", error_code="NAME_REQUIRED")
            if len(name) > GROUP_CONFIG.MAX_NAME_LENGTH:
                return ServiceResult.failure(
                    f"Group name cannot exceed {GROUP_CONFIG.MAX_NAME_LENGTH} characters",
                    error_code="NAME_TOO_LONG",
                )
            chat.group_name = name
            update_fields.append("group_name")

        if description is not None:
            description = description.strip()
            if len(description) > GROUP_CONFIG.MAX_DESCRIPTION_LENGTH:
                return ServiceResult.failure(
                    f"Description cannot exceed {GROUP_CONFIG.MAX_DESCRIPTION_LENGTH} characters",
                    error_code="DESCRIPTION_TOO_LONG",
                )
            chat.group_description = description
            update_fields.append("group_description")

        if update_fields:
            chat.save(update_fields=[*update_fields, "updated_at"])
            cls.get_logger().info(f"Group {chat.id} updated by user {actor.id}: {update_fields}")

        return ServiceResult.success(chat)

    @classmethod
    def set_group_avatar(cls, chat_id: int, actor: User, avatar: File) -> ServiceResult[Chat]:
        """
        Replace a group's avatar (creator only).

        The new image is uploaded before the row changes; the previous image
        is removed best-effort afterwards.
        """
        chat, error = cls._get_administered_group(chat_id, actor)
        if error:
            return error

        invalid = validate_avatar(avatar)
        if invalid:
            return invalid

        try:
            path = ObjectStorage.upload(group_avatar_path(avatar.name), avatar)
        except ExternalServiceError as e:
            return cls.handle_exception(
                e,
                f"Avatar upload for group {chat.id} failed",
                log_level=logging.WARNING,
                error_code="AVATAR_UPLOAD_FAILED",
            )

        previous_path = ObjectStorage.path_from_url(chat.group_avatar_url)
        chat.group_avatar_url = ObjectStorage.get_public_url(path)
        chat.save(update_fields=["group_avatar_url", "updated_at"])

        if previous_path:
            ObjectStorage.remove([previous_path])

        cls.get_logger().info(f"Group {chat.id} avatar replaced by user {actor.id}")
        return ServiceResult.success(chat)

    @classmethod
    def remove_group_avatar(cls, chat_id: int, actor: User) -> ServiceResult[Chat]:
        """Remove a group's avatar (creator only). Storage removal is best-effort."""
        chat, error = cls._get_administered_group(chat_id, actor)
        if error:
            return error

        path = ObjectStorage.path_from_url(chat.group_avatar_url)
        chat.group_avatar_url = ""
        chat.save(update_fields=["group_avatar_url", "updated_at"])

        if path and ObjectStorage.remove([path]):
            cls.get_logger().warning(f"Stored avatar {path} of group {chat.id} was not removed")

        return ServiceResult.success(chat)

    # ==========================================================================
    # Deletion
    # ==========================================================================

    @classmethod
    def delete_chat(cls, chat_id: int, user: User) -> ServiceResult[ChatDeletion]:
        """
        Delete a chat and everything that belongs to it.

        The deletion runs as a sequence of independent steps tracked by a
        ChatDeletion record (see DeletionState):

            1. Authorize: group chats only by their creator, 1:1 chats by
               either participant. Denial ends in REJECTED with zero
               deletions.
            2. Storage: remove every message file and the group avatar,
               best-effort (failures are counted, never blocking).
            3. Dependents: TypingSignal -> Notification -> Message ->
               ChatMember; each step is independent and a failed step is
               logged and skipped.
            4. Chat row. If it fails, steps 3 and 4 are retried exactly
               once; a second failure ends in FAILED.

        Returns:
            ServiceResult whose data is the ChatDeletion record, on success
            and on failure alike.

        Error codes:
            CHAT_NOT_FOUND, PERMISSION_DENIED, NOT_PARTICIPANT,
            DELETION_IN_PROGRESS: Rejected, nothing deleted
            CLEANUP_INCOMPLETE: Dependents may be gone but the chat row remains
        """
        deletion = ChatDeletion.objects.create(chat_id=chat_id, requested_by=user)
        deletion.authorize()
        deletion.save()

        rejection = cls._authorize_deletion(chat_id, user, deletion)
        if rejection:
            deletion.reject(rejection.error_code)
            deletion.save()
            cls.get_logger().warning(
                f"Deletion of chat {chat_id} by user {user.id} rejected: {rejection.error_code}"
            )
            return ServiceResult.failure(
                rejection.error,
                error_code=rejection.error_code,
                data=deletion,
            )

        deletion.start_storage_cleanup()
        deletion.save()
        deletion.storage_failures = cls._delete_stored_files(chat_id)

        deletion.start_dependents()
        deletion.save()
        return cls._run_ordered_delete(deletion)

    @classmethod
    def resume_deletion(cls, deletion: ChatDeletion) -> ServiceResult[ChatDeletion]:
        """
        Finish a deletion that stopped in a non-terminal state.

        Storage cleanup is repeated if it had not finished; the ordered
        delete then runs again with a fresh retry budget.

        Error codes:
            NOT_RESUMABLE: Deletion is not in an in-progress state
            CLEANUP_INCOMPLETE: As for delete_chat
        """
        if deletion.state not in IN_PROGRESS_DELETION_STATES:
            return ServiceResult.failure(
                f"Deletion in state {deletion.state} cannot be resumed",
                error_code="NOT_RESUMABLE",
                data=deletion,
            )

        if deletion.state == DeletionState.DELETING_STORAGE:
            deletion.storage_failures = cls._delete_stored_files(deletion.chat_id)

        deletion.resume()
        deletion.save()
        cls.get_logger().info(f"Resuming deletion {deletion.id} of chat {deletion.chat_id}")
        return cls._run_ordered_delete(deletion)

    @classmethod
    def _authorize_deletion(
        cls,
        chat_id: int,
        user: User,
        deletion: ChatDeletion,
    ) -> ServiceResult | None:
        chat = Chat.objects.filter(id=chat_id).first()
        if chat is None:
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")

        if chat.is_group:
            if chat.created_by_id != user.id:
                return ServiceResult.failure(
                    "Only the group creator can delete this chat",
                    error_code="PERMISSION_DENIED",
                )
        elif not chat.has_member(user.id):
            return ServiceResult.failure(
                "You are not a member of this chat",
                error_code="NOT_PARTICIPANT",
            )

        in_progress = (
            ChatDeletion.objects.filter(chat_id=chat_id, state__in=IN_PROGRESS_DELETION_STATES)
            .exclude(id=deletion.id)
            .exists()
        )
        if in_progress:
            return ServiceResult.failure(
                "This chat is already being deleted",
                error_code="DELETION_IN_PROGRESS",
            )
        return None

    @classmethod
    def _delete_stored_files(cls, chat_id: int) -> int:
        """Remove message files and the group avatar. Returns the failure count."""
        urls = list(
            Message.objects.filter(chat_id=chat_id)
            .exclude(file_url__isnull=True)
            .exclude(file_url="")
            .values_list("file_url", flat=True)
        )
        avatar_url = Chat.objects.filter(id=chat_id).values_list("group_avatar_url", flat=True).first()
        if avatar_url:
            urls.append(avatar_url)

        failures = 0
        paths = []
        for url in urls:
            path = ObjectStorage.path_from_url(url)
            if path is None:
                failures += 1
                cls.get_logger().warning(f"Cannot resolve storage path for {url} (chat {chat_id})")
                continue
            paths.append(path)

        failures += ObjectStorage.remove(paths)
        if failures:
            cls.get_logger().warning(f"{failures} stored file(s) of chat {chat_id} were not removed")
        return failures

    @classmethod
    def _delete_dependent_rows(cls, model, chat_id: int) -> int:
        deleted, _ = model.objects.filter(chat_id=chat_id).delete()
        return deleted

    @classmethod
    def _delete_dependents(cls, chat_id: int) -> None:
        for model in cls.DEPENDENT_DELETE_ORDER:
            try:
                with cls.atomic():
                    deleted = cls._delete_dependent_rows(model, chat_id)
            except DatabaseError as e:
                cls.get_logger().warning(
                    f"Deleting {model.__name__} rows of chat {chat_id} failed, continuing: {e}"
                )
                continue
            cls.get_logger().debug(f"Deleted {deleted} {model.__name__} row(s) of chat {chat_id}")

    @classmethod
    def _delete_chat_row(cls, chat_id: int) -> None:
        # DirectChatPair cascades; any remaining dependent raises ProtectedError
        Chat.objects.filter(id=chat_id).delete()

    @classmethod
    def _run_ordered_delete(cls, deletion: ChatDeletion) -> ServiceResult[ChatDeletion]:
        max_passes = 1 + DELETION_CONFIG.CHAT_ROW_RETRIES

        while True:
            cls._delete_dependents(deletion.chat_id)
            deletion.start_chat_row()
            deletion.save()

            try:
                with cls.atomic():
                    cls._delete_chat_row(deletion.chat_id)
            except DatabaseError as e:
                if deletion.attempts < max_passes:
                    cls.get_logger().warning(
                        f"Deleting chat row {deletion.chat_id} failed "
                        f"(attempt {deletion.attempts}), retrying: {e}"
                    )
                    deletion.start_dependents()
                    deletion.save()
                    continue

                cls.get_logger().error(
                    f"Deleting chat row {deletion.chat_id} failed after "
                    f"{deletion.attempts} attempts: {e}"
                )
                deletion.fail(str(e))
                deletion.save()
                return ServiceResult.failure(
                    "Chat could not be fully deleted; cleanup is incomplete",
                    error_code="CLEANUP_INCOMPLETE",
                    data=deletion,
                )

            deletion.complete()
            deletion.save()
            cls.get_logger().info(
                f"Deleted chat {deletion.chat_id} (attempts={deletion.attempts}, "
                f"storage_failures={deletion.storage_failures})"
            )
            return ServiceResult.success(deletion)


class MembershipService(BaseService):
    """
    Service for group membership management.

    1:1 chats always keep exactly their two members; every operation here
    rejects them with NOT_GROUP.

    Methods:
        add_member: Add a user to a group (creator only)
        remove_member: Remove a user from a group (creator only)
        leave: Leave a group (any member except the creator)
    """

    @classmethod
    def add_member(cls, chat_id: int, actor: User, user_id: int) -> ServiceResult[ChatMember]:
        """
        Error codes:
            CHAT_NOT_FOUND, NOT_GROUP, PERMISSION_DENIED
            USER_NOT_FOUND: User does not exist or is inactive
            ALREADY_MEMBER: User already belongs to the group
        """
        chat, error = ChatService._get_administered_group(chat_id, actor)
        if error:
            return error

        if not User.objects.filter(id=user_id, is_active=True).exists():
            return ServiceResult.failure("User not found", error_code="USER_NOT_FOUND")

        if chat.has_member(user_id):
            return ServiceResult.failure(
                "User is already a member of this group",
                error_code="ALREADY_MEMBER",
            )

        try:
            with cls.atomic():
                member = ChatMember.objects.create(chat=chat, user_id=user_id)
        except IntegrityError:
            return ServiceResult.failure(
                "User is already a member of this group",
                error_code="ALREADY_MEMBER",
            )

        cls.get_logger().info(f"User {user_id} added to group {chat.id} by {actor.id}")
        return ServiceResult.success(member)

    @classmethod
    def remove_member(cls, chat_id: int, actor: User, user_id: int) -> ServiceResult[int]:
        """
        Error codes:
            CHAT_NOT_FOUND, NOT_GROUP, PERMISSION_DENIED
            CANNOT_REMOVE_SELF: The creator cannot remove themself
            NOT_PARTICIPANT: User is not a member of the group
        """
        chat, error = ChatService._get_administered_group(chat_id, actor)
        if error:
            return error

        if user_id == actor.id:
            return ServiceResult.failure(
                "You cannot remove yourself from your own group",
                error_code="CANNOT_REMOVE_SELF",
            )

        member = ChatMember.objects.filter(chat=chat, user_id=user_id).first()
        if member is None:
            return ServiceResult.failure(
                "User is not a member of this group",
                error_code="NOT_PARTICIPANT",
            )

        member.delete()
        cls.get_logger().info(f"User {user_id} removed from group {chat.id} by {actor.id}")
        return ServiceResult.success(user_id)

    @classmethod
    def leave(cls, chat_id: int, user: User) -> ServiceResult[int]:
        """
        Leave a group chat.

        The creator is the group's only admin and cannot leave; they delete
        the group instead.

        Error codes:
            CHAT_NOT_FOUND, NOT_GROUP, NOT_PARTICIPANT, CREATOR_CANNOT_LEAVE
        """
        chat = Chat.objects.filter(id=chat_id).first()
        if chat is None:
            return ServiceResult.failure("Chat not found", error_code="CHAT_NOT_FOUND")
        if not chat.is_group:
            return ServiceResult.failure(
                "You cannot leave a 1:1 chat",
                error_code="NOT_GROUP",
            )
        if chat.is_admin(user):
            return ServiceResult.failure(
                "The group creator cannot leave; delete the group instead",
                error_code="CREATOR_CANNOT_LEAVE",
            )

        deleted, _ = ChatMember.objects.filter(chat=chat, user_id=user.id).delete()
        if not deleted:
            return ServiceResult.failure(
                "You are not a member of this chat",
                error_code="NOT_PARTICIPANT",
            )

        cls.get_logger().info(f"User {user.id} left group {chat.id}")
        return ServiceResult.success(chat.id)


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        list_messages: Messages of a chat in display order
        send_message: Post text and/or a file, then notify other members
        edit_message: Change content (author only)
        delete_message: Hard delete (author only)
    """

    @classmethod
    def list_messages(cls, chat_id: int, user: User) -> ServiceResult[list[Message]]:
        not_member = check_membership(chat_id, user)
        if not_member:
            return not_member

        messages = list(Message.objects.filter(chat_id=chat_id).order_by("created_at", "id"))
        return ServiceResult.success(messages)

    @classmethod
    def send_message(
        cls,
        chat_id: int,
        sender: User,
        content: str = "",
        file: File | None = None,
    ) -> ServiceResult[Message]:
        """
        Send a message to a chat.

        Implementation:
            1. Validate content (non-empty unless a file is attached, length)
            2. Verify sender is a member
            3. Upload the file (if any) under chat_files/<sender_id>/
            4. Insert the message
            5. Fan out notifications to other members (never fails the send)

        Error codes:
            EMPTY_MESSAGE, CONTENT_TOO_LONG
            CHAT_NOT_FOUND, NOT_PARTICIPANT
            UPLOAD_FAILED: File could not be stored; nothing inserted
            SEND_FAILED: Insert failed; the uploaded file is removed again
        """
        content = (content or "").strip()

        if not content and file is None:
            return ServiceResult.failure(
                "Message must have content or a file",
                error_code="EMPTY_MESSAGE",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
            )

        not_member = check_membership(chat_id, sender)
        if not_member:
            return not_member

        path = None
        file_url = None
        if file is not None:
            try:
                path = ObjectStorage.upload(message_file_path(sender.id, file.name), file)
            except ExternalServiceError as e:
                return cls.handle_exception(
                    e,
                    f"Attachment upload by user {sender.id} failed",
                    log_level=logging.WARNING,
                    error_code="UPLOAD_FAILED",
                )
            file_url = ObjectStorage.get_public_url(path)

        try:
            with cls.atomic():
                message = Message.objects.create(
                    chat_id=chat_id,
                    user=sender,
                    content=content,
                    file_url=file_url,
                )
        except DatabaseError as e:
            if path:
                ObjectStorage.remove([path])
            return cls.handle_exception(
                e,
                f"Inserting message of user {sender.id} into chat {chat_id} failed",
                error_code="SEND_FAILED",
            )

        notified = NotificationFanout.fan_out(message)
        cls.get_logger().debug(
            f"Message {message.id} sent to chat {chat_id} by user {sender.id}, "
            f"{notified} notification(s)"
        )
        return ServiceResult.success(message)

    @classmethod
    def _get_authored_message(cls, message_id: int, user: User) -> tuple[Message | None, ServiceResult | None]:
        message = Message.objects.filter(id=message_id, user_id=user.id).first()
        if message is not None:
            return message, None
        if Message.objects.filter(id=message_id).exists():
            return None, ServiceResult.failure(
                "You can only change your own messages",
                error_code="NOT_AUTHOR",
            )
        return None, ServiceResult.failure("Message not found", error_code="MESSAGE_NOT_FOUND")

    @classmethod
    def edit_message(cls, message_id: int, user: User, content: str) -> ServiceResult[Message]:
        """
        Edit a message's content.

        Only content and updated_at change; id and created_at are kept and
        the message keeps its place in the chat.

        Error codes:
            MESSAGE_NOT_FOUND, NOT_AUTHOR
            EMPTY_MESSAGE: No content and no file left
            CONTENT_TOO_LONG
        """
        message, error = cls._get_authored_message(message_id, user)
        if error:
            return error

        content = (content or "").strip()
        if not content and not message.file_url:
            return ServiceResult.failure(
                "Message must have content or a file",
                error_code="EMPTY_MESSAGE",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content cannot exceed {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
            )

        message.content = content
        message.updated_at = timezone.now()
        message.save(update_fields=["content", "updated_at"])

        cls.get_logger().debug(f"Message {message.id} edited by user {user.id}")
        return ServiceResult.success(message)

    @classmethod
    def delete_message(cls, message_id: int, user: User) -> ServiceResult[int]:
        """
        Hard delete a message. Its stored file is removed best-effort.

        Error codes:
            MESSAGE_NOT_FOUND, NOT_AUTHOR
        """
        message, error = cls._get_authored_message(message_id, user)
        if error:
            return error

        path = ObjectStorage.path_from_url(message.file_url)
        message.delete()

        if path and ObjectStorage.remove([path]):
            cls.get_logger().warning(f"Attachment {path} of message {message_id} was not removed")

        cls.get_logger().info(f"Message {message_id} deleted by user {user.id}")
        return ServiceResult.success(message_id)


class TypingService(BaseService):
    """
    Service for typing signals.

    Signals are advisory: one row per call, no debounce on the write side.
    """

    @classmethod
    def record(cls, chat_id: int, user: User) -> ServiceResult[TypingSignal]:
        not_member = check_membership(chat_id, user)
        if not_member:
            return not_member
        return ServiceResult.success(TypingSignal.objects.create(chat_id=chat_id, user=user))

    @classmethod
    def purge_stale(cls, older_than_seconds: int = TYPING_CONFIG.RETENTION_SECONDS) -> int:
        """Delete typing rows older than the given age. Returns the count."""
        cutoff = timezone.now() - timedelta(seconds=older_than_seconds)
        deleted, _ = TypingSignal.objects.filter(created_at__lt=cutoff).delete()
        if deleted:
            cls.get_logger().info(f"Purged {deleted} stale typing signal(s)")
        return deleted


class DirectoryService(BaseService):
    """
    Read-side service for chat listings.

    Methods:
        list_chats: Every chat of a user, enriched for display
        summarize_chat: One chat, same shape as list_chats entries
        list_members: Members of a chat with display data
        available_users: Candidates for a new group or member addition
    """

    @staticmethod
    def _chats_with_members():
        return Chat.objects.prefetch_related("members__user__profile")

    @classmethod
    def list_chats(cls, user: User) -> ServiceResult[list[dict]]:
        chats = cls._chats_with_members().filter(members__user_id=user.id).order_by("-created_at", "-id")
        data = ChatSummarySerializer(chats, many=True, context={"user": user}).data
        return ServiceResult.success([dict(entry) for entry in data])

    @classmethod
    def summarize_chat(cls, chat_id: int, user: User) -> ServiceResult[dict]:
        not_member = check_membership(chat_id, user)
        if not_member:
            return not_member
        chat = cls._chats_with_members().get(id=chat_id)
        return ServiceResult.success(dict(ChatSummarySerializer(chat, context={"user": user}).data))

    @classmethod
    def list_members(cls, chat_id: int, user: User) -> ServiceResult[list[dict]]:
        not_member = check_membership(chat_id, user)
        if not_member:
            return not_member
        members = ChatMember.objects.filter(chat_id=chat_id).select_related("chat", "user__profile")
        return ServiceResult.success([dict(entry) for entry in MemberSerializer(members, many=True).data])

    @classmethod
    def available_users(
        cls,
        user: User,
        exclude_ids: Iterable[int] = (),
        limit: int = GROUP_CONFIG.AVAILABLE_USERS_LIMIT,
    ) -> ServiceResult[list[dict]]:
        users = (
            User.objects.filter(is_active=True)
            .exclude(id=user.id)
            .exclude(id__in=list(exclude_ids))
            .select_related("profile")
            .order_by("profile__username", "id")[:limit]
        )
        return ServiceResult.success([dict(entry) for entry in UserCardSerializer(users, many=True).data])
