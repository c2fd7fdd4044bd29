"""
Tests for chat models.

Covers:
- Chat admin / membership helpers
- DirectChatPair and ChatMember constraints
- Message ordering and edit marker
- ChatDeletion state transitions (django-fsm)
- PROTECT foreign keys that force the ordered deletion
"""

import pytest
from django.db import IntegrityError
from django.db.models import ProtectedError
from django_fsm import TransitionNotAllowed

from authentication.tests.factories import UserFactory
from chat.models import (
    Chat,
    ChatDeletion,
    ChatMember,
    DeletionState,
    DirectChatPair,
    Message,
)
from chat.tests.factories import (
    ChatDeletionFactory,
    ChatFactory,
    ChatMemberFactory,
    MessageFactory,
)


# =============================================================================
# Chat
# =============================================================================


class TestChat:
    """Tests for Chat helpers."""

    def test_creator_is_admin_of_group(self, group_chat, alice, bob):
        assert group_chat.is_admin(alice) is True
        assert group_chat.is_admin(bob) is False

    def test_direct_chat_has_no_admin(self, direct_chat, alice, bob):
        assert direct_chat.is_admin(alice) is False
        assert direct_chat.is_admin(bob) is False

    def test_has_member(self, group_chat, carol, outsider):
        assert group_chat.has_member(carol.id) is True
        assert group_chat.has_member(outsider.id) is False

    def test_str_representations(self, group_chat, direct_chat):
        assert str(group_chat) == "Group: Weekend plans"
        assert str(direct_chat) == f"Direct({direct_chat.pk})"


# =============================================================================
# Constraints
# =============================================================================


class TestConstraints:
    """Database constraints on pairs and memberships."""

    def test_direct_pair_is_unique_per_user_pair(self, direct_chat, alice, bob):
        lower, higher = sorted([alice, bob], key=lambda u: u.id)
        other_chat = ChatFactory()

        with pytest.raises(IntegrityError):
            DirectChatPair.objects.create(chat=other_chat, user_lower=lower, user_higher=higher)

    def test_direct_pair_requires_canonical_order(self, db):
        lower = UserFactory()
        higher = UserFactory()

        with pytest.raises(IntegrityError):
            DirectChatPair.objects.create(chat=ChatFactory(), user_lower=higher, user_higher=lower)

    def test_membership_is_unique(self, direct_chat, alice):
        with pytest.raises(IntegrityError):
            ChatMember.objects.create(chat=direct_chat, user=alice)

    def test_chat_row_is_protected_by_members(self, direct_chat):
        with pytest.raises(ProtectedError):
            direct_chat.delete()

    def test_chat_row_is_protected_by_messages(self, db):
        message = MessageFactory()

        with pytest.raises(ProtectedError):
            Chat.objects.filter(id=message.chat_id).delete()

    def test_direct_pair_cascades_with_chat_row(self, direct_chat):
        ChatMember.objects.filter(chat=direct_chat).delete()

        direct_chat.delete()

        assert not DirectChatPair.objects.filter(chat_id=direct_chat.id).exists()

    def test_user_with_direct_chat_cannot_be_deleted(self, direct_chat, bob):
        with pytest.raises(ProtectedError):
            bob.delete()

        assert ChatMember.objects.filter(chat=direct_chat).count() == 2

    def test_group_membership_goes_with_the_user(self, group_chat, carol):
        carol_id = carol.id

        carol.delete()

        assert not group_chat.has_member(carol_id)
        assert group_chat.members.count() == 2


# =============================================================================
# Message
# =============================================================================


class TestMessage:
    """Tests for Message ordering and edit marker."""

    def test_messages_are_ordered_by_creation(self, direct_chat, alice, bob):
        first = MessageFactory(chat=direct_chat, user=alice)
        second = MessageFactory(chat=direct_chat, user=bob)

        assert list(Message.objects.filter(chat=direct_chat)) == [first, second]

    def test_new_message_is_not_edited(self, db):
        message = MessageFactory()

        assert message.updated_at is None
        assert message.is_edited is False

    def test_str_shows_attachment_for_file_only_message(self, db):
        message = MessageFactory(content="", file_url="https://cdn.example.com/chat_files/1/1.txt")

        assert "[attachment]" in str(message)

    def test_str_truncates_long_content(self, db):
        message = MessageFactory(content="x" * 80)

        assert str(message).endswith("...")


# =============================================================================
# ChatDeletion
# =============================================================================


class TestChatDeletionTransitions:
    """
    Tests for the deletion state machine.

    Verifies:
    - The happy path REQUESTED -> ... -> DONE
    - The single retry path back to DELETING_DEPENDENTS
    - Terminal states refuse further transitions
    """

    def _new(self, user):
        return ChatDeletion.objects.create(chat_id=ChatFactory().id, requested_by=user)

    def test_happy_path(self, alice):
        deletion = self._new(alice)

        deletion.authorize()
        deletion.start_storage_cleanup()
        deletion.start_dependents()
        deletion.start_chat_row()
        deletion.complete()

        assert deletion.state == DeletionState.DONE
        assert deletion.attempts == 1
        assert deletion.completed_at is not None
        assert deletion.is_terminal is True

    def test_retry_counts_attempts(self, alice):
        deletion = self._new(alice)
        deletion.authorize()
        deletion.start_storage_cleanup()
        deletion.start_dependents()
        deletion.start_chat_row()

        deletion.start_dependents()

        assert deletion.state == DeletionState.DELETING_DEPENDENTS
        assert deletion.attempts == 2

    def test_reject_records_reason(self, alice):
        deletion = self._new(alice)
        deletion.authorize()

        deletion.reject("PERMISSION_DENIED")

        assert deletion.state == DeletionState.REJECTED
        assert deletion.failure_reason == "PERMISSION_DENIED"
        assert deletion.is_terminal is True

    def test_cannot_skip_authorization(self, alice):
        deletion = self._new(alice)

        with pytest.raises(TransitionNotAllowed):
            deletion.start_storage_cleanup()

    def test_terminal_state_cannot_resume(self, alice):
        deletion = ChatDeletionFactory(requested_by=alice, state=DeletionState.FAILED)

        with pytest.raises(TransitionNotAllowed):
            deletion.resume()

    def test_resume_resets_attempts(self, alice):
        deletion = ChatDeletionFactory(
            requested_by=alice,
            state=DeletionState.DELETING_CHAT_ROW,
            attempts=2,
        )

        deletion.resume()

        assert deletion.state == DeletionState.DELETING_DEPENDENTS
        assert deletion.attempts == 1

    def test_chat_deletion_outlives_chat(self, db):
        member = ChatMemberFactory()
        deletion = ChatDeletionFactory(chat_id=member.chat_id)
        chat_id = member.chat_id

        member.delete()
        Chat.objects.filter(id=chat_id).delete()

        deletion.refresh_from_db()
        assert deletion.chat_id == chat_id
