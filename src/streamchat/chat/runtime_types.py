from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


StreamEventKind = Literal[
    "content",
    "tool_call_start",
    "tool_call_end",
    "citation",
    "usage",
    "done",
    "error",
]

StoreEventKind = Literal[
    "session_created",
    "session_renamed",
    "session_deleted",
    "sessions_loaded",
    "message_appended",
    "message_updated",
    "messages_removed",
    "messages_loaded",
]


@dataclass
class StreamEvent:
    kind: StreamEventKind
    data: dict[str, object] = field(default_factory=dict)

    @property
    def text(self) -> str:
        value = self.data.get("text")
        return value if isinstance(value, str) else ""

    @property
    def is_terminal(self) -> bool:
        return self.kind in ("done", "error")


@dataclass(frozen=True)
class StoreEvent:
    kind: StoreEventKind
    session_id: str | None = None
    message_id: str | None = None


@dataclass
class CommandResult:
    ok: bool
    handled: bool = True
    message: str | None = None
