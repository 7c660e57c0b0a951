from __future__ import annotations

import json
import logging

from .runtime_types import StreamEvent

logger = logging.getLogger(__name__)

KNOWN_EVENT_TYPES = frozenset(
    {"content", "tool_call_start", "tool_call_end", "citation", "usage", "done", "error"}
)


def parse_sse_event(event_type: str, data: str) -> StreamEvent | None:
    """Parse one SSE event body.

    Backend format: ``{"type": "content", "data": {"text": "Hello"}}``; the
    inner ``data`` object becomes the event payload.
    """
    try:
        parsed = json.loads(data)
    except ValueError as exc:
        logger.error("Failed to parse SSE event %s: %s", event_type, exc)
        return None

    if event_type not in KNOWN_EVENT_TYPES:
        logger.warning("Unknown SSE event type: %s", event_type)
        return None

    payload = parsed.get("data") if isinstance(parsed, dict) else None
    if not isinstance(payload, dict):
        payload = {}
    return StreamEvent(kind=event_type, data=payload)


class SseDecoder:
    """Line-oriented server-sent-events decoder.

    Feed it decoded lines (without the trailing newline) in arrival order;
    it yields events as soon as their ``data:`` line is seen.
    """

    def __init__(self) -> None:
        self._event_type = ""

    def feed_line(self, line: str) -> list[StreamEvent]:
        stripped = line.strip()
        if not stripped:
            # blank line ends the event
            self._event_type = ""
            return []

        if stripped.startswith("event:"):
            self._event_type = stripped[6:].strip()
            return []

        if stripped.startswith("data:"):
            data = stripped[5:].strip()
            if not self._event_type or not data:
                return []
            event = parse_sse_event(self._event_type, data)
            return [event] if event is not None else []

        # comments (":keepalive") and unsupported fields
        return []

    def feed_text(self, text: str) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in text.split("\n"):
            events.extend(self.feed_line(line))
        return events
