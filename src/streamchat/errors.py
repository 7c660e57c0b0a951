from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ValidationResult


class ChatClientError(Exception):
    """Base error for the chat client core."""
    pass


class ValidationError(ChatClientError):
    """Outgoing text was rejected before send."""

    def __init__(self, result: ValidationResult) -> None:
        super().__init__(result.message or "Invalid message")
        self.result = result


class NetworkError(ChatClientError):
    """Transport or backend failure before or during a stream."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CancellationError(ChatClientError):
    """User-initiated stop. Not a failure."""
    pass


class AuthError(ChatClientError):
    """Authentication failed or the login redirect carried an error."""
    pass


class IntegrityError(ChatClientError):
    """An operation would break a session or stream invariant."""
    pass


class AlreadyStreamingError(IntegrityError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id} already has a live stream")
        self.session_id = session_id


class SessionNotFoundError(IntegrityError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"unknown session: {session_id}")
        self.session_id = session_id


class InvalidTitleError(IntegrityError):
    pass


class InvalidTransitionError(IntegrityError):
    pass
