"""
QuickDefine exception hierarchy.

All custom exceptions inherit from QuickDefineException so callers can
catch a single base type when they want a broad safety net.  Errors that
can end a lookup carry an :class:`~quickdefine.models.ErrorKind` so the
coordinator can report them without inspecting types.
"""

from quickdefine.models import ErrorKind


class QuickDefineException(Exception):
    """Base exception for all QuickDefine errors."""

    kind: ErrorKind = ErrorKind.NETWORK


class ConfigurationError(QuickDefineException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class InputError(QuickDefineException, ValueError):
    """Raised for an empty or otherwise unusable lookup key."""

    kind = ErrorKind.INPUT


# ---------------------------------------------------------------------------
# Remote tier
# ---------------------------------------------------------------------------


class RemoteError(QuickDefineException):
    """Base for failures of the remote dictionary source."""


class NotFoundError(RemoteError, LookupError):
    """Raised when the remote source confirms the word does not exist."""

    kind = ErrorKind.NOT_FOUND


class RemoteTimeoutError(RemoteError, TimeoutError):
    """Raised when a remote request exceeds its deadline."""

    kind = ErrorKind.TIMEOUT


class TransientNetworkError(RemoteError):
    """Raised for connection-level failures and 5xx responses."""


class RemoteResponseError(RemoteError):
    """Raised for a definitive non-404 error status or an unreadable body."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Persistent store
# ---------------------------------------------------------------------------


class StoreError(QuickDefineException):
    """Raised when a persistent store read fails."""


class StoreUnavailableError(StoreError):
    """Raised when the persistent store is disabled or failed to initialise."""


class StoreWriteError(StoreError):
    """Raised when a write or batch transaction fails."""


class PreloadError(QuickDefineException):
    """Raised when a bundled dictionary file cannot be loaded."""
