"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content limits, attachment paths)
- Group chats (name/description limits, avatar validation)
- Typing signals (indicator window, retention)
- Object storage prefixes

Import example:
    from chat.constants import MESSAGE_CONFIG, TYPING_CONFIG
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters

    # Text used in place of empty content when only a file was sent
    ATTACHMENT_PLACEHOLDER: Final[str] = "sent an attachment"


# =============================================================================
# Group Configuration
# =============================================================================


class GROUP_CONFIG:
    """Configuration for group chats."""

    MAX_NAME_LENGTH: Final[int] = 100
    MAX_DESCRIPTION_LENGTH: Final[int] = 500

    # Fallback display name when a group has no name
    DEFAULT_NAME: Final[str] = "Group chat"

    # Avatar validation
    AVATAR_MAX_BYTES: Final[int] = 5 * 1024 * 1024  # 5MB
    AVATAR_CONTENT_TYPE_PREFIX: Final[str] = "image/"

    # Candidate list size for member pickers
    AVAILABLE_USERS_LIMIT: Final[int] = 50


# =============================================================================
# Typing Configuration
# =============================================================================


class TYPING_CONFIG:
    """Configuration for typing signals."""

    # How long the "is typing" indicator stays on after the last signal
    INDICATOR_WINDOW_SECONDS: Final[float] = 3.0

    # Signals older than this at receipt are ignored by observers
    STALE_AFTER_SECONDS: Final[int] = 5

    # Rows older than this are purged by the periodic cleanup task
    RETENTION_SECONDS: Final[int] = 300  # 5 minutes


# =============================================================================
# Storage Configuration
# =============================================================================


class STORAGE_CONFIG:
    """Object storage path prefixes."""

    # chat_files/<sender_id>/<epoch_ms>.<ext>
    MESSAGE_FILES_PREFIX: Final[str] = "chat_files"

    # group-avatars/<random>_<epoch_ms>.<ext>
    GROUP_AVATARS_PREFIX: Final[str] = "group-avatars"


# =============================================================================
# Deletion Configuration
# =============================================================================


class DELETION_CONFIG:
    """Configuration for chat deletion sagas."""

    # Extra attempts of the ordered delete after the chat row step fails
    CHAT_ROW_RETRIES: Final[int] = 1

    # Sagas idle in a non-terminal state longer than this are resumed
    STALLED_AFTER_SECONDS: Final[int] = 600  # 10 minutes
