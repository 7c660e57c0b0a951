"""Tests for the chat data model."""
from __future__ import annotations

import pytest

from streamchat.chat.cancellation import CancellationToken
from streamchat.errors import CancellationError
from streamchat.models import (
    STATUS_TRANSITIONS,
    Message,
    MessageStatus,
    Role,
    Session,
    StreamHandle,
    format_elapsed,
)


def test_terminal_statuses() -> None:
    assert MessageStatus.COMPLETE.is_terminal
    assert MessageStatus.CANCELLED.is_terminal
    assert MessageStatus.ERROR.is_terminal
    assert not MessageStatus.PENDING.is_terminal
    assert not MessageStatus.STREAMING.is_terminal


def test_no_transition_leaves_a_terminal_state() -> None:
    for status in (MessageStatus.COMPLETE, MessageStatus.CANCELLED, MessageStatus.ERROR):
        assert STATUS_TRANSITIONS[status] == frozenset()


def test_pending_may_skip_streaming() -> None:
    assert MessageStatus.COMPLETE in STATUS_TRANSITIONS[MessageStatus.PENDING]
    assert MessageStatus.STREAMING in STATUS_TRANSITIONS[MessageStatus.PENDING]
    assert MessageStatus.PENDING not in STATUS_TRANSITIONS[MessageStatus.STREAMING]


def test_message_defaults() -> None:
    msg = Message(role=Role.ASSISTANT)
    assert msg.content == ""
    assert msg.status is MessageStatus.PENDING
    assert msg.tool_calls == []
    assert msg.citations == []
    assert msg.usage is None
    assert len(msg.id) == 32


def test_session_defaults_and_lookup() -> None:
    session = Session()
    assert session.title == "New chat"
    assert session.messages == []
    user = Message(role=Role.USER, content="q", status=MessageStatus.COMPLETE)
    reply = Message(role=Role.ASSISTANT)
    session.messages.extend([user, reply])
    assert session.find_message(user.id) is user
    assert session.find_message("missing") is None
    assert session.last_assistant_message is reply


def test_stream_handle_is_live_until_token_set() -> None:
    handle = StreamHandle("s", "m", CancellationToken(), started_at=0.0)
    assert handle.is_live
    handle.cancellation_token.cancel()
    assert not handle.is_live


def test_format_elapsed_seconds() -> None:
    assert format_elapsed(0) == "0.0s"
    assert format_elapsed(4.25) == "4.2s"
    assert format_elapsed(59.9) == "59.9s"


def test_format_elapsed_minutes_and_hours() -> None:
    assert format_elapsed(75) == "1m15s"
    assert format_elapsed(3600 + 120 + 5) == "1h2m"


def test_format_elapsed_negative_clamps_to_zero() -> None:
    assert format_elapsed(-3) == "0.0s"


def test_cancellation_token_sets_once() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    assert token.cancel("session deleted") is True
    assert token.cancel() is False
    assert token.reason == "session deleted"
    with pytest.raises(CancellationError, match="session deleted"):
        token.raise_if_cancelled()
