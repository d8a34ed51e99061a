"""Custom exceptions for the party game engine."""

from typing import Any


class PartyGameError(Exception):
    """Base exception for all party game errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# Media Errors
# =============================================================================


class MediaFetchError(PartyGameError):
    """Base exception for failures resolving round media."""

    code = "media_fetch_error"


class InvalidReferenceError(MediaFetchError):
    """Raised when a source reference is malformed. Never retried."""

    code = "invalid_reference"

    def __init__(self, reference: str, **kwargs: Any):
        super().__init__(f"Invalid source reference: {reference!r}", **kwargs)
        self.reference = reference


class MediaNotFoundError(MediaFetchError):
    """Raised when the provider does not know the source."""

    code = "not_found"


class NoPlayableItemsError(MediaFetchError):
    """Raised when the source has no item with playable media."""

    code = "no_playable_items"

    def __init__(
        self,
        message: str = "No playable items found",
        candidates: int = 0,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.candidates = candidates


class RateLimitedError(MediaFetchError):
    """Raised when the provider rate limits us."""

    code = "rate_limited"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class MediaTimeoutError(MediaFetchError):
    """Raised when the provider does not answer within the timeout window."""

    code = "timeout"

    def __init__(self, timeout: float, **kwargs: Any):
        super().__init__(f"Media provider timed out after {timeout}s", **kwargs)
        self.timeout = timeout


# =============================================================================
# Playback Errors
# =============================================================================


class PlaybackError(PartyGameError):
    """Base exception for playback errors."""

    code = "playback_error"


class PlaybackUnavailableError(PlaybackError):
    """Raised when round media cannot be played."""

    code = "unavailable"


class AutoplayBlockedError(PlaybackError):
    """Raised when the client player refused to start without a user gesture."""

    code = "autoplay_blocked"


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(PartyGameError):
    """Base exception for session-related errors."""

    pass


class NotEnoughRoundsError(SessionError):
    """Raised when a session would start with zero playable rounds."""

    def __init__(self, message: str = "Session has no playable rounds", **kwargs: Any):
        super().__init__(message, **kwargs)


class SessionNotFoundError(SessionError):
    """Raised when session does not exist."""

    def __init__(self, session_id: str, **kwargs: Any):
        super().__init__(f"Session not found: {session_id}", **kwargs)
        self.session_id = session_id


class SessionStateError(SessionError):
    """Raised when session is in invalid state for operation."""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        expected_status: str | None = None,
        actual_status: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.session_id = session_id
        self.expected_status = expected_status
        self.actual_status = actual_status


class SessionPersistenceError(SessionError):
    """Raised when unable to persist session progress."""

    pass


class LedgerClosedError(SessionError):
    """Raised when scoring a round whose ledger entry is already final."""

    def __init__(self, round_id: str, **kwargs: Any):
        super().__init__(f"Round {round_id} is closed for scoring", **kwargs)
        self.round_id = round_id


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(PartyGameError):
    """Raised when validation fails."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
