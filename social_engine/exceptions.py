"""
Exception classes and the publishing error taxonomy.

Exceptions follow the fail-fast philosophy: components raise as soon as
something is wrong, with enough context to debug.  Only two places convert
exceptions into data: the platform adapter boundary and the publishing
orchestrator, both of which turn a ``PublishingError`` into a failed
``PublishResult`` carrying its ``ErrorKind``.

Hierarchy:
    Exception
    +-- EngineBaseError (base for all engine-specific errors)
    |   +-- PublishingError (carries an ErrorKind)
    |       +-- NoAccountConnectedError
    |       +-- AuthError
    |       +-- InsufficientScopeError
    |       +-- UnsupportedContentError
    |       +-- PlatformAPIError
    |       +-- MediaFetchError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
"""

from enum import Enum
from typing import Iterable, List, Optional


# =============================================================================
# ERROR TAXONOMY
# =============================================================================


class ErrorKind(Enum):
    """Classification of publishing failures.

    Terminal kinds require user intervention (connect, reconnect, fix
    permissions or content) and stop automatic retries immediately.
    Transient kinds are eligible for retry up to ``max_retries``.
    """

    NO_ACCOUNT_CONNECTED = "no_account_connected"
    TOKEN_EXPIRED_NO_REFRESH = "token_expired_no_refresh"
    REFRESH_FAILED = "refresh_failed"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    UNSUPPORTED_CONTENT = "unsupported_content"
    PUBLISH_WINDOW_MISSED = "publish_window_missed"
    PLATFORM_API_ERROR = "platform_api_error"
    MEDIA_FETCH_ERROR = "media_fetch_error"

    @property
    def is_terminal(self) -> bool:
        """Check if this kind of failure must not be retried."""
        return self not in _TRANSIENT_KINDS


_TRANSIENT_KINDS = frozenset({
    ErrorKind.PLATFORM_API_ERROR,
    ErrorKind.MEDIA_FETCH_ERROR,
})


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class EngineBaseError(Exception):
    """Base exception for all engine-related errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


# =============================================================================
# PUBLISHING EXCEPTIONS
# =============================================================================


class PublishingError(EngineBaseError):
    """Base class for failures that end up on a ``PublishResult``.

    Attributes:
        kind: The ``ErrorKind`` classifying this failure.
    """

    kind: ErrorKind = ErrorKind.PLATFORM_API_ERROR

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        super().__init__(message)

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal


class NoAccountConnectedError(PublishingError):
    """Raised when the user has no active credential for the platform."""

    kind = ErrorKind.NO_ACCOUNT_CONNECTED

    def __init__(self, user_id: str, platform: str):
        self.user_id = user_id
        self.platform = platform
        super().__init__(f"No active {platform} account connected for user {user_id}")


class AuthError(PublishingError):
    """Raised when a credential cannot be made valid.

    ``kind`` is either ``TOKEN_EXPIRED_NO_REFRESH`` or ``REFRESH_FAILED``;
    both are terminal and require the user to reconnect the account.

    Attributes:
        credential_id: The credential that failed.
    """

    def __init__(self, kind: ErrorKind, credential_id: str, message: str = ""):
        if kind not in (ErrorKind.TOKEN_EXPIRED_NO_REFRESH, ErrorKind.REFRESH_FAILED):
            raise ValueError(f"AuthError does not accept kind {kind}")
        self.credential_id = credential_id
        super().__init__(
            message or f"Credential {credential_id}: {kind.value}",
            kind=kind,
        )


class InsufficientScopeError(PublishingError):
    """Raised when a credential lacks scopes required for publishing.

    Attributes:
        missing: Sorted list of missing scope strings.
    """

    kind = ErrorKind.INSUFFICIENT_SCOPE

    def __init__(self, platform: str, missing: Iterable[str]):
        self.platform = platform
        self.missing: List[str] = sorted(missing)
        super().__init__(
            f"{platform} credential is missing scopes: {', '.join(self.missing)}"
        )


class UnsupportedContentError(PublishingError):
    """Raised when a platform cannot publish the requested content type."""

    kind = ErrorKind.UNSUPPORTED_CONTENT


class PlatformAPIError(PublishingError):
    """Raised when a platform API call fails or returns a malformed response.

    Attributes:
        platform: Platform name.
        status_code: HTTP status code, if a response was received.
    """

    kind = ErrorKind.PLATFORM_API_ERROR

    def __init__(
        self,
        platform: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.platform = platform
        self.status_code = status_code
        prefix = f"{platform} API error"
        if status_code is not None:
            prefix += f" (HTTP {status_code})"
        super().__init__(f"{prefix}: {message}")


class MediaFetchError(PublishingError):
    """Raised when the media to publish cannot be downloaded.

    Attributes:
        url: The media URL that failed.
    """

    kind = ErrorKind.MEDIA_FETCH_ERROR

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Failed to fetch media {url}: {reason}")


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ErrorKind",
    "EngineBaseError",
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "PublishingError",
    "NoAccountConnectedError",
    "AuthError",
    "InsufficientScopeError",
    "UnsupportedContentError",
    "PlatformAPIError",
    "MediaFetchError",
]
