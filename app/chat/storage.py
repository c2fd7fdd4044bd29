"""
Object storage access for chat files and group avatars.

Thin wrapper around Django's default storage backend (local filesystem in
development, S3 via django-storages when a bucket is configured).

Path layout:
    chat_files/<sender_id>/<epoch_ms>.<ext>
    group-avatars/<random>_<epoch_ms>.<ext>

Uploads raise ExternalServiceError on failure. Removal is best-effort and
reports how many objects could not be removed instead of raising.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from typing import TYPE_CHECKING

from django.core.files.storage import default_storage

from chat.constants import STORAGE_CONFIG
from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from django.core.files import File

logger = logging.getLogger(__name__)


def _extension(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    return ext or "bin"


def message_file_path(sender_id: int, filename: str) -> str:
    """Build the storage path for a file attached to a message."""
    epoch_ms = int(time.time() * 1000)
    return f"{STORAGE_CONFIG.MESSAGE_FILES_PREFIX}/{sender_id}/{epoch_ms}.{_extension(filename)}"


def group_avatar_path(filename: str) -> str:
    """Build the storage path for a group avatar."""
    epoch_ms = int(time.time() * 1000)
    token = secrets.token_hex(6)
    return f"{STORAGE_CONFIG.GROUP_AVATARS_PREFIX}/{token}_{epoch_ms}.{_extension(filename)}"


class ObjectStorage:
    """
    Object storage operations used by the chat services.

    Methods:
        upload: Store content under a path, return the stored path
        get_public_url: Public URL for a stored path
        remove: Best-effort removal of several paths
        path_from_url: Recover the stored path from a public URL
    """

    @staticmethod
    def upload(path: str, content: File) -> str:
        """
        Store content at path.

        Returns:
            The path actually used by the backend (it may differ from the
            requested one when the name is already taken).

        Raises:
            ExternalServiceError: If the backend rejects the upload
        """
        try:
            stored_path = default_storage.save(path, content)
        except Exception as e:
            logger.error(f"Upload to {path} failed: {e}")
            raise ExternalServiceError(
                "File upload failed",
                error_code="UPLOAD_FAILED",
                details={"path": path, "original_error": str(e)},
            ) from e

        logger.debug(f"Uploaded {stored_path}")
        return stored_path

    @staticmethod
    def get_public_url(path: str) -> str:
        return default_storage.url(path)

    @staticmethod
    def remove(paths: Iterable[str]) -> int:
        """
        Remove stored objects, continuing past individual failures.

        Returns:
            Number of paths that could not be removed
        """
        failures = 0
        for path in paths:
            if not path:
                continue
            try:
                default_storage.delete(path)
            except Exception as e:
                failures += 1
                logger.warning(f"Could not remove stored object {path}: {e}")
        return failures

    @staticmethod
    def path_from_url(url: str | None) -> str | None:
        """
        Recover the storage path from a public URL produced by get_public_url.

        Returns None for empty URLs and for URLs that do not point into
        the configured storage.
        """
        if not url:
            return None
        base = default_storage.url("")
        if base and url.startswith(base):
            path = url[len(base):]
        else:
            marker = None
            for prefix in (
                STORAGE_CONFIG.MESSAGE_FILES_PREFIX,
                STORAGE_CONFIG.GROUP_AVATARS_PREFIX,
            ):
                index = url.find(f"/{prefix}/")
                if index != -1:
                    marker = index + 1
                    break
            if marker is None:
                return None
            path = url[marker:]
        return path.split("?", 1)[0] or None
