"""SessionStore — ordered sessions and their messages, observable."""
from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from ..errors import InvalidTitleError, InvalidTransitionError, SessionNotFoundError
from ..models import (
    STATUS_TRANSITIONS,
    Citation,
    Message,
    MessageStatus,
    Role,
    Session,
    ToolCall,
    Usage,
    utc_now,
)
from .runtime_types import StoreEvent

if TYPE_CHECKING:
    from ..auth import AuthContext
    from .stream_controller import StreamController

logger = logging.getLogger(__name__)

StoreListener = Callable[[StoreEvent], None]


class SessionStore:
    """Sessions keyed by id, ordered by most recent activity.

    Message content only changes through the ``*_assistant_*`` and
    ``set_message_status`` methods, which the stream controller uses.
    Every change is published to subscribers as a StoreEvent.
    """

    def __init__(self, *, auth: AuthContext | None = None) -> None:
        # Least recently active first; listing reverses it.
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._listeners: list[StoreListener] = []
        self._streams: StreamController | None = None
        if auth is not None:
            auth.add_teardown(self.clear)

    def bind_stream_controller(self, controller: StreamController) -> None:
        self._streams = controller

    # -- observers -------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes."""
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _emit(self, kind: str, session_id: str | None = None, message_id: str | None = None) -> None:
        event = StoreEvent(kind=kind, session_id=session_id, message_id=message_id)
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session store listener failed on %s", kind)

    # -- lookups ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[Session]:
        """Sessions, most recently active first."""
        return list(reversed(self._sessions.values()))

    def _touch(self, session: Session, when: datetime | None = None) -> None:
        session.updated_at = when or utc_now()
        self._sessions.move_to_end(session.id)

    def _live_message(self, session_id: str, message_id: str) -> Message | None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping update for deleted session %s", session_id)
            return None
        message = session.find_message(message_id)
        if message is None or message.role is not Role.ASSISTANT:
            logger.debug("Dropping update for unknown message %s", message_id)
            return None
        if message.is_terminal:
            logger.debug("Dropping update for finished message %s", message_id)
            return None
        return message

    # -- session CRUD ----------------------------------------------------

    def load(self, sessions: Iterable[Session]) -> None:
        """Replace contents with sessions fetched from the backend.

        Sessions with a live stream keep their local copy.
        """
        streaming = {
            session_id: session
            for session_id, session in self._sessions.items()
            if self._streams is not None and self._streams.is_streaming(session_id)
        }
        ordered: OrderedDict[str, Session] = OrderedDict()
        for session in sorted(sessions, key=lambda s: s.updated_at):
            ordered[session.id] = streaming.get(session.id, session)
        for session_id, session in streaming.items():
            if session_id not in ordered:
                ordered[session_id] = session
            ordered.move_to_end(session_id)
        self._sessions = ordered
        self._emit("sessions_loaded")

    def create(
        self,
        session_id: str | None = None,
        title: str | None = None,
        created_at: datetime | None = None,
    ) -> Session:
        session = Session()
        if session_id is not None:
            session.id = session_id
        if title and title.strip():
            session.title = title.strip()
        if created_at is not None:
            session.created_at = created_at
            session.updated_at = created_at
        if session.id in self._sessions:
            raise InvalidTransitionError(f"session {session.id} already exists")
        self._sessions[session.id] = session
        self._emit("session_created", session.id)
        return session

    def rename(self, session_id: str, title: str) -> Session:
        cleaned = (title or "").strip()
        if not cleaned:
            raise InvalidTitleError("Title cannot be empty")
        session = self.require(session_id)
        session.title = cleaned
        self._emit("session_renamed", session_id)
        return session

    async def delete(self, session_id: str) -> bool:
        """Remove a session, stopping its live stream first.

        Returns False when the session did not exist.
        """
        if session_id not in self._sessions:
            return False
        if self._streams is not None and self._streams.is_streaming(session_id):
            logger.info("Stopping live stream before deleting session %s", session_id)
            await self._streams.stop(session_id)
        removed = self._sessions.pop(session_id, None)
        if removed is None:
            return False
        self._emit("session_deleted", session_id)
        return True

    def load_messages(self, session_id: str, messages: Iterable[Message]) -> bool:
        """Replace a session's history with the backend copy.

        Skipped (returns False) while the session is streaming or once it
        already holds local messages.
        """
        session = self._sessions.get(session_id)
        if session is None or session.messages:
            return False
        if self._streams is not None and self._streams.is_streaming(session_id):
            return False
        session.messages = list(messages)
        self._emit("messages_loaded", session_id)
        return True

    def clear(self) -> None:
        if not self._sessions:
            return
        self._sessions.clear()
        self._emit("sessions_loaded")

    # -- messages --------------------------------------------------------

    def append_user_message(self, session_id: str, text: str) -> Message:
        """Optimistic append; user text needs no streaming."""
        session = self.require(session_id)
        message = Message(role=Role.USER, content=text, status=MessageStatus.COMPLETE)
        session.messages.append(message)
        self._touch(session, message.created_at)
        self._emit("message_appended", session_id, message.id)
        return message

    def append_assistant_placeholder(self, session_id: str) -> Message:
        session = self.require(session_id)
        message = Message(role=Role.ASSISTANT, status=MessageStatus.PENDING)
        session.messages.append(message)
        self._touch(session, message.created_at)
        self._emit("message_appended", session_id, message.id)
        return message

    def mutate_assistant_content(self, session_id: str, message_id: str, chunk: str) -> bool:
        """Append a chunk to a live assistant message.

        Returns False (chunk dropped) when the session was deleted or the
        message already reached a terminal state.
        """
        message = self._live_message(session_id, message_id)
        if message is None:
            return False
        if message.status is MessageStatus.PENDING:
            message.status = MessageStatus.STREAMING
        message.content += chunk
        self._touch(self._sessions[session_id])
        self._emit("message_updated", session_id, message_id)
        return True

    def annotate_assistant(
        self,
        session_id: str,
        message_id: str,
        *,
        tool_call: ToolCall | None = None,
        citation: Citation | None = None,
        usage: Usage | None = None,
    ) -> bool:
        message = self._live_message(session_id, message_id)
        if message is None:
            return False
        if tool_call is not None:
            for index, existing in enumerate(message.tool_calls):
                if existing.id == tool_call.id:
                    message.tool_calls[index] = tool_call
                    break
            else:
                message.tool_calls.append(tool_call)
        if citation is not None:
            message.citations.append(citation)
        if usage is not None:
            message.usage = usage
        self._emit("message_updated", session_id, message_id)
        return True

    def set_message_status(
        self,
        session_id: str,
        message_id: str,
        status: MessageStatus,
        *,
        error: str | None = None,
        remote_id: str | None = None,
    ) -> bool:
        """Move a message forward in its lifecycle.

        Returns False when the session or message is gone. Raises
        InvalidTransitionError for a backwards or out-of-terminal move.
        """
        session = self._sessions.get(session_id)
        message = session.find_message(message_id) if session is not None else None
        if message is None:
            return False
        if status is message.status:
            return True
        if status not in STATUS_TRANSITIONS[message.status]:
            raise InvalidTransitionError(
                f"message {message_id}: {message.status.value} -> {status.value}"
            )
        message.status = status
        if error is not None:
            message.error = error
        if remote_id is not None:
            message.remote_id = remote_id
        self._emit("message_updated", session_id, message_id)
        return True

    def remove_messages_from(self, session_id: str, message_id: str) -> list[Message]:
        """Drop ``message_id`` and everything after it. Used by retry."""
        session = self.require(session_id)
        for index, message in enumerate(session.messages):
            if message.id == message_id:
                removed = session.messages[index:]
                del session.messages[index:]
                self._emit("messages_removed", session_id, message_id)
                return removed
        return []
