from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from .chat.cancellation import CancellationToken


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {MessageStatus.COMPLETE, MessageStatus.CANCELLED, MessageStatus.ERROR}
)

# Allowed forward moves; anything else is rejected by the store.
STATUS_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.PENDING: frozenset({MessageStatus.STREAMING}) | TERMINAL_STATUSES,
    MessageStatus.STREAMING: TERMINAL_STATUSES,
    MessageStatus.COMPLETE: frozenset(),
    MessageStatus.CANCELLED: frozenset(),
    MessageStatus.ERROR: frozenset(),
}

STATUS_ICONS: dict[MessageStatus, str] = {
    MessageStatus.PENDING: "…",
    MessageStatus.STREAMING: "●",
    MessageStatus.COMPLETE: "✓",
    MessageStatus.CANCELLED: "■",
    MessageStatus.ERROR: "⚠",
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


@dataclass
class ToolCall:
    id: str
    tool: str
    status: str = "pending"  # "pending" | "completed" | "error"
    output: dict | None = None
    error: str | None = None


@dataclass(frozen=True)
class Citation:
    source: str
    source_ref: str
    reference: str


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


@dataclass(frozen=True)
class ApiStatus:
    version: str = "unknown"
    dev_mode: bool = False

    @property
    def label(self) -> str:
        return f"API v{self.version}" + (" (dev)" if self.dev_mode else "")


@dataclass
class Message:
    role: Role
    content: str = ""
    status: MessageStatus = MessageStatus.PENDING
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    error: str | None = None
    remote_id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    usage: Usage | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class Session:
    id: str = field(default_factory=new_id)
    title: str = "New chat"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    messages: list[Message] = field(default_factory=list)

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    @property
    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT:
                return message
        return None


@dataclass
class StreamHandle:
    session_id: str
    message_id: str
    cancellation_token: CancellationToken
    started_at: float  # loop.time() at start

    @property
    def is_live(self) -> bool:
        return not self.cancellation_token.cancelled


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None  # "Empty" | "TooLarge"
    normalized_content: str | None = None
    message: str | None = None


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds for the status line. 4.25→'4.2s', 75→'1m15s'"""
    if seconds < 0:
        seconds = 0.0
    if seconds < 60:
        return f"{seconds:.1f}s"

    total_seconds = int(seconds)
    minutes, secs = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h{minutes}m"
    return f"{minutes}m{secs}s"
