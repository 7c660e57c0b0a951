"""StreamController — one live assistant stream per session."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from functools import partial

from ..errors import (
    AlreadyStreamingError,
    AuthError,
    CancellationError,
    InvalidTransitionError,
    NetworkError,
)
from ..models import Citation, Message, MessageStatus, Role, StreamHandle, ToolCall, Usage
from ..telemetry import TelemetryReporter
from .cancellation import CancellationToken
from .elapsed import DEFAULT_TICK_INTERVAL_S, ElapsedTicker
from .runtime_types import StreamEvent
from .session_store import SessionStore
from .validator import ensure_valid

logger = logging.getLogger(__name__)

StreamTransport = Callable[[str, str], AsyncIterator[StreamEvent]]
TickListener = Callable[[str, float], None]

GENERIC_FAILURE = "Something went wrong while receiving the response"


def _as_int(value: object) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


class StreamController:
    """Drives assistant replies from the streaming transport into the store.

    Per message: pending → streaming → complete | cancelled | error. Chunks
    are applied in arrival order and only while the handle's cancellation
    token is clear.
    """

    def __init__(
        self,
        store: SessionStore,
        transport: StreamTransport,
        *,
        reporter: TelemetryReporter | None = None,
        on_tick: TickListener | None = None,
        tick_interval_s: float = DEFAULT_TICK_INTERVAL_S,
    ) -> None:
        self._store = store
        self._transport = transport
        self._reporter = reporter
        self._on_tick = on_tick
        self._tick_interval_s = tick_interval_s
        self._handles: dict[str, StreamHandle] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._tickers: dict[str, ElapsedTicker] = {}
        store.bind_stream_controller(self)

    def is_streaming(self, session_id: str) -> bool:
        return session_id in self._handles

    def handle_for(self, session_id: str) -> StreamHandle | None:
        return self._handles.get(session_id)

    @property
    def streaming_session_ids(self) -> list[str]:
        return list(self._handles)

    def elapsed(self, session_id: str) -> float | None:
        ticker = self._tickers.get(session_id)
        return ticker.elapsed() if ticker is not None else None

    async def send(self, session_id: str, raw: str) -> StreamHandle:
        """Validate, append the user message, and start the reply stream.

        Raises ValidationError (nothing appended) or AlreadyStreamingError.
        """
        text = ensure_valid(raw)
        self._store.require(session_id)
        if self.is_streaming(session_id):
            raise AlreadyStreamingError(session_id)
        self._store.append_user_message(session_id, text)
        return self.start(session_id, text)

    def start(self, session_id: str, text: str) -> StreamHandle:
        """Create the assistant placeholder and begin streaming in the background."""
        if self.is_streaming(session_id):
            raise AlreadyStreamingError(session_id)
        self._store.require(session_id)

        placeholder = self._store.append_assistant_placeholder(session_id)
        loop = asyncio.get_running_loop()
        handle = StreamHandle(
            session_id=session_id,
            message_id=placeholder.id,
            cancellation_token=CancellationToken(),
            started_at=loop.time(),
        )
        self._handles[session_id] = handle

        ticker = ElapsedTicker(
            handle.started_at,
            partial(self._tick, session_id),
            interval_s=self._tick_interval_s,
        )
        self._tickers[session_id] = ticker
        ticker.start()

        self._tasks[session_id] = asyncio.create_task(
            self._consume(handle, text), name=f"stream:{session_id}"
        )
        self._breadcrumb("start", session_id)
        logger.info("Stream started for session %s", session_id)
        return handle

    async def stop(self, session_id: str) -> bool:
        """Cancel the live stream; content stays exactly as received.

        Returns False when there was nothing to stop.
        """
        handle = self._handles.get(session_id)
        if handle is None:
            return False
        if not handle.cancellation_token.cancel():
            return False

        self._finish(handle, MessageStatus.CANCELLED)
        self._breadcrumb("cancelled", session_id)
        logger.info("Stream stopped for session %s", session_id)

        task = self._tasks.get(session_id)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.wait({task})
        if task is not None and task.done() and self._tasks.get(session_id) is task:
            del self._tasks[session_id]
        return True

    async def retry(self, session_id: str, message_id: str) -> StreamHandle:
        """Start a fresh stream for the user turn before ``message_id``.

        The old assistant message (and anything after it) is discarded;
        a failed handle is never resumed.
        """
        session = self._store.require(session_id)
        if self.is_streaming(session_id):
            raise AlreadyStreamingError(session_id)

        index = next(
            (i for i, message in enumerate(session.messages) if message.id == message_id),
            None,
        )
        if index is None or session.messages[index].role is not Role.ASSISTANT:
            raise InvalidTransitionError(f"no assistant message {message_id} to retry")
        if not session.messages[index].is_terminal:
            raise InvalidTransitionError(f"message {message_id} is still streaming")

        prompt: Message | None = None
        for message in reversed(session.messages[:index]):
            if message.role is Role.USER:
                prompt = message
                break
        if prompt is None:
            raise InvalidTransitionError(f"no user message precedes {message_id}")

        self._store.remove_messages_from(session_id, message_id)
        self._breadcrumb("retry", session_id)
        return self.start(session_id, prompt.content)

    async def wait(self, session_id: str) -> None:
        """Wait until the session's current stream task has finished."""
        task = self._tasks.get(session_id)
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def close(self) -> None:
        for session_id in list(self._handles):
            await self.stop(session_id)

    # -- internals -------------------------------------------------------

    async def _consume(self, handle: StreamHandle, text: str) -> None:
        session_id = handle.session_id
        token = handle.cancellation_token
        stream = self._transport(session_id, text)
        try:
            async for event in stream:
                token.raise_if_cancelled()
                if self._apply(handle, event):
                    return
            if not token.cancelled:
                logger.warning("Stream for session %s ended without completion marker", session_id)
                self._finish(handle, MessageStatus.ERROR, error="Stream ended unexpectedly")
        except CancellationError:
            logger.debug("Dropped chunk after stop for session %s", session_id)
        except (NetworkError, AuthError) as exc:
            if not token.cancelled:
                self._finish(handle, MessageStatus.ERROR, error=str(exc))
        except asyncio.CancelledError:
            if not token.cancelled:
                token.cancel("aborted")
                self._finish(handle, MessageStatus.CANCELLED)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure while streaming session %s", session_id)
            if not token.cancelled:
                self._finish(handle, MessageStatus.ERROR, error=GENERIC_FAILURE)
            if self._reporter is not None:
                await self._reporter.capture_exception(exc, {"session_id": session_id})
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Closing stream for %s failed: %s", session_id, exc)
            self._release(handle)
            if self._tasks.get(session_id) is asyncio.current_task():
                del self._tasks[session_id]

    def _apply(self, handle: StreamHandle, event: StreamEvent) -> bool:
        """Apply one backend event. Returns True when the stream is over."""
        session_id, message_id = handle.session_id, handle.message_id
        data = event.data

        if event.kind == "content":
            if not self._store.mutate_assistant_content(session_id, message_id, event.text):
                # session deleted underneath us
                handle.cancellation_token.cancel("session deleted")
                self._release(handle)
                return True
            return False

        if event.kind == "tool_call_start":
            tool_call = ToolCall(id=str(data.get("id", "")), tool=str(data.get("tool", "")))
            self._store.annotate_assistant(session_id, message_id, tool_call=tool_call)
            return False

        if event.kind == "tool_call_end":
            error = data.get("error")
            output = data.get("output")
            tool_call = ToolCall(
                id=str(data.get("id", "")),
                tool=str(data.get("tool", "")),
                status="error" if error else "completed",
                output=output if isinstance(output, dict) else None,
                error=str(error) if error else None,
            )
            self._store.annotate_assistant(session_id, message_id, tool_call=tool_call)
            return False

        if event.kind == "citation":
            citation = Citation(
                source=str(data.get("source", "")),
                source_ref=str(data.get("source_ref", "")),
                reference=str(data.get("reference", "")),
            )
            self._store.annotate_assistant(session_id, message_id, citation=citation)
            return False

        if event.kind == "usage":
            cost = data.get("cost_usd")
            usage = Usage(
                input_tokens=_as_int(data.get("input_tokens")),
                output_tokens=_as_int(data.get("output_tokens")),
                total_tokens=_as_int(data.get("total_tokens")),
                cost_usd=float(cost) if isinstance(cost, (int, float)) else 0.0,
            )
            self._store.annotate_assistant(session_id, message_id, usage=usage)
            return False

        if event.kind == "done":
            remote_id = data.get("message_id")
            self._finish(
                handle,
                MessageStatus.COMPLETE,
                remote_id=remote_id if isinstance(remote_id, str) else None,
            )
            self._breadcrumb("done", session_id)
            return True

        if event.kind == "error":
            message = data.get("message")
            code = data.get("code")
            error = message if isinstance(message, str) and message else "Failed to get response"
            self._finish(handle, MessageStatus.ERROR, error=error)
            self._breadcrumb("error", session_id, error=str(code or "backend_error"))
            return True

        return False

    def _finish(
        self,
        handle: StreamHandle,
        status: MessageStatus,
        *,
        error: str | None = None,
        remote_id: str | None = None,
    ) -> None:
        try:
            self._store.set_message_status(
                handle.session_id, handle.message_id, status, error=error, remote_id=remote_id
            )
        except InvalidTransitionError as exc:
            logger.warning("Ignoring late status change: %s", exc)
        self._release(handle)

    def _release(self, handle: StreamHandle) -> None:
        session_id = handle.session_id
        if self._handles.get(session_id) is handle:
            del self._handles[session_id]
            ticker = self._tickers.pop(session_id, None)
            if ticker is not None:
                ticker.stop()

    def _tick(self, session_id: str, elapsed: float) -> None:
        if self._on_tick is not None:
            self._on_tick(session_id, elapsed)

    def _breadcrumb(self, event_type: str, session_id: str, error: str | None = None) -> None:
        if self._reporter is not None:
            self._reporter.add_streaming_breadcrumb(event_type, session_id, error)
