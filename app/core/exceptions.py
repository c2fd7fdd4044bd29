"""
Base exception classes for application-wide error handling.

This module provides a small exception hierarchy that enables:
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    └── ExternalServiceError - Object storage / third-party failures

Usage:
    from core.exceptions import ExternalServiceError

    try:
        storage.save(path, content)
    except OSError as e:
        raise ExternalServiceError(
            "Upload failed",
            error_code="UPLOAD_FAILED",
            details={"path": path, "original_error": str(e)},
        ) from e

Note:
    Services catch these and convert them to ServiceResult failures; they
    are never meant to escape to the realtime or WebSocket layers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (paths, metadata, etc.)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for a transport payload.

        Example:
            {
                "error": "Upload failed",
                "error_code": "UPLOAD_FAILED",
                "details": {"path": "chat_files/1/1700000000000.png"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for:
    - Object storage upload/delete failures
    - Network timeouts talking to a storage backend

    Note:
        Log the original error for debugging but don't expose
        internal details to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
