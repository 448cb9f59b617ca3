"""Custom exceptions for sanctionsync.

All exceptions inherit from SanctionSyncError with context fields
for better error tracking and debugging.
"""

from typing import Any


class SanctionSyncError(Exception):
    """Base exception for all sanctionsync errors.

    Includes context dict for structured error information.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message


class TransportError(SanctionSyncError):
    """Raised when a feed cannot be fetched (network failure or non-2xx)."""

    pass


class MalformedFeedError(SanctionSyncError):
    """Raised when a feed document is not well-formed."""

    pass


class RecordNormalizationError(SanctionSyncError):
    """Raised when a single feed entry cannot be mapped to an Entity."""

    pass


class ReconciliationConflict(SanctionSyncError):
    """Raised when a write collides with the natural-key uniqueness constraint."""

    pass


class ConfigurationError(SanctionSyncError):
    """Raised when configuration is invalid or missing."""

    pass
