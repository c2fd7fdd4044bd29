"""
Test configuration and fixtures for notification tests.

Usage:
    def test_example(group_chat, sender):
        message = MessageFactory(chat=group_chat, user=sender)
        assert NotificationFanout.fan_out(message) == 2
"""

import pytest

from authentication.tests.factories import UserFactory
from chat.tests.factories import DirectChatFactory, GroupChatFactory


@pytest.fixture
def sender(db):
    """Create the user whose messages trigger notifications."""
    return UserFactory(username="olena")


@pytest.fixture
def recipient(db):
    return UserFactory(username="taras")


@pytest.fixture
def direct_chat(sender, recipient):
    return DirectChatFactory(members=[sender, recipient])


@pytest.fixture
def group_chat(sender, recipient):
    """Group of three: sender (creator), recipient and one more member."""
    return GroupChatFactory(
        created_by=sender,
        group_name="Weekend trip",
        members=[recipient, UserFactory(username="mykola")],
    )
