"""Chat runtime: validation, streaming, sessions and the chat panel."""
from __future__ import annotations

from .cancellation import CancellationToken
from .panel import ChatPanel
from .session_store import SessionStore
from .stream_controller import StreamController
from .validator import MAX_MESSAGE_BYTES, ensure_valid, validate_message

__all__ = [
    "CancellationToken",
    "ChatPanel",
    "MAX_MESSAGE_BYTES",
    "SessionStore",
    "StreamController",
    "ensure_valid",
    "validate_message",
]
