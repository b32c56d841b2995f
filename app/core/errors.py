"""Coach error taxonomy.

Every error carries the HTTP status and the public message the API answers
with. ``TurnCancelledError`` is not a ``CoachError``: a cancelled turn is a
normal outcome and must never produce an error toast.
"""

from __future__ import annotations


class CoachError(Exception):
    """Base class for errors surfaced by the coach API."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


class AuthenticationError(CoachError):
    """Missing or invalid bearer credential."""

    status_code = 401
    public_message = "Unauthorized"


class ConversationNotFoundError(CoachError):
    status_code = 404
    public_message = "Conversation not found"


class UpstreamUnavailableError(CoachError):
    """The model API is unreachable or answered with a non-success status."""

    status_code = 503
    public_message = "AI service unavailable"


class StreamInterruptedError(CoachError):
    """The model stream broke off before ``[DONE]`` was observed."""

    status_code = 503
    public_message = "AI response was interrupted"


class TurnCancelledError(Exception):
    """Raised inside a stream consumer when its cancellation token fires."""
