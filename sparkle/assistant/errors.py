"""
Assistant error types.

Only the message string of these ever reaches a client; the class decides
which terminal path an operation takes.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for assistant errors."""


class ValidationError(AssistantError):
    """Prompt rejected before any operation exists (empty, malformed)."""


class PolicyViolation(ValidationError):
    """Prompt blocked by the content policy."""


class RateLimitExceeded(AssistantError):
    """User is over their per-minute or per-day ceiling."""

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamTransportError(AssistantError):
    """Connection reset, bad status or malformed frame from the provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class StreamCancelled(AssistantError):
    """The stream observed its cancellation handle. A normal terminal path."""


class DirectiveApplicationFailure(AssistantError):
    """Persisting an assistant rename failed."""


class DuplicateOperationError(AssistantError):
    """An operation id was registered twice."""


class RoomAccessDenied(AssistantError):
    """The user is not a member of the room they addressed."""
