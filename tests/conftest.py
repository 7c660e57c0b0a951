"""Shared fixtures: a scripted streaming transport and a wired controller."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

from streamchat.chat.runtime_types import StreamEvent
from streamchat.chat.session_store import SessionStore
from streamchat.chat.stream_controller import StreamController


class ScriptedTransport:
    """Streaming transport fed by the test one event at a time.

    Push StreamEvents, an Exception to raise mid-stream, or None to end
    the stream without a completion marker.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.closed: list[str] = []
        self._queues: dict[str, asyncio.Queue] = {}

    def queue_for(self, session_id: str) -> asyncio.Queue:
        return self._queues.setdefault(session_id, asyncio.Queue())

    def push(self, session_id: str, *items: object) -> None:
        queue = self.queue_for(session_id)
        for item in items:
            queue.put_nowait(item)

    def content(self, session_id: str, *chunks: str) -> None:
        self.push(session_id, *(StreamEvent("content", {"text": c}) for c in chunks))

    def done(self, session_id: str, message_id: str = "remote-1") -> None:
        self.push(session_id, StreamEvent("done", {"message_id": message_id}))

    def __call__(self, session_id: str, text: str) -> AsyncIterator[StreamEvent]:
        self.calls.append((session_id, text))
        return self._stream(session_id, self.queue_for(session_id))

    async def _stream(self, session_id: str, queue: asyncio.Queue) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            self.closed.append(session_id)
            if self._queues.get(session_id) is queue:
                del self._queues[session_id]


async def settle(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the loop until ``predicate`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest_asyncio.fixture
async def controller(store: SessionStore, transport: ScriptedTransport):
    controller = StreamController(store, transport, tick_interval_s=0.01)
    yield controller
    await controller.close()
