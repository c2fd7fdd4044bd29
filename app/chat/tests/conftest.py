"""
Test configuration and fixtures for chat tests.

This module provides:
- User fixtures with different chat roles
- Chat fixtures (1:1 and group)
- Upload helpers for attachments and avatars

Usage:
    def test_example(direct_chat, alice):
        result = MessageService.send_message(direct_chat.id, alice, content="hi")
        assert result.success
"""

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile

from authentication.tests.factories import UserFactory
from chat.tests.factories import DirectChatFactory, GroupChatFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    """Create the user who starts chats and creates groups."""
    return UserFactory(username="alice")


@pytest.fixture
def bob(db):
    """Create alice's usual counterpart."""
    return UserFactory(username="bob")


@pytest.fixture
def carol(db):
    """Create a third user, member of the group chat."""
    return UserFactory(username="carol")


@pytest.fixture
def outsider(db):
    """Create a user who belongs to no test chat."""
    return UserFactory(username="outsider")


# =============================================================================
# Chat Fixtures
# =============================================================================


@pytest.fixture
def direct_chat(alice, bob):
    """Create the 1:1 chat between alice and bob."""
    return DirectChatFactory(members=[alice, bob])


@pytest.fixture
def group_chat(alice, bob, carol):
    """
    Create a group chat administered by alice.

    Members: alice (creator), bob, carol.
    """
    return GroupChatFactory(
        created_by=alice,
        group_name="Weekend plans",
        members=[bob, carol],
    )


# =============================================================================
# Upload Fixtures
# =============================================================================


@pytest.fixture
def text_file():
    """A small non-image attachment."""
    return SimpleUploadedFile("notes.txt", b"meeting notes", content_type="text/plain")


@pytest.fixture
def avatar_file():
    """A small image suitable as a group avatar."""
    return SimpleUploadedFile("avatar.png", b"\x89PNG\r\n\x1a\n" + b"0" * 64, content_type="image/png")
