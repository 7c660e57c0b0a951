"""Tests for the server-sent-events decoder."""
from __future__ import annotations

import logging

from streamchat.chat.sse import SseDecoder, parse_sse_event


def test_parse_content_event_uses_inner_data() -> None:
    event = parse_sse_event("content", '{"type": "content", "data": {"text": "Hello"}}')
    assert event is not None
    assert event.kind == "content"
    assert event.text == "Hello"
    assert event.is_terminal is False


def test_parse_done_event_is_terminal() -> None:
    event = parse_sse_event("done", '{"type": "done", "data": {"message_id": "m-1"}}')
    assert event is not None
    assert event.is_terminal
    assert event.data == {"message_id": "m-1"}


def test_malformed_json_is_skipped_and_logged(caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="streamchat.chat.sse"):
        assert parse_sse_event("content", "{not json") is None
    assert "Failed to parse SSE event" in caplog.text


def test_unknown_event_type_is_skipped(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="streamchat.chat.sse"):
        assert parse_sse_event("heartbeat", '{"type": "heartbeat", "data": {}}') is None
    assert "Unknown SSE event type" in caplog.text


def test_missing_inner_data_gives_empty_payload() -> None:
    event = parse_sse_event("content", '{"type": "content"}')
    assert event is not None
    assert event.data == {}
    assert event.text == ""


def test_decoder_yields_events_in_order() -> None:
    decoder = SseDecoder()
    events = decoder.feed_text(
        "event: content\n"
        'data: {"type": "content", "data": {"text": "Hel"}}\n'
        "\n"
        "event: content\n"
        'data: {"type": "content", "data": {"text": "lo"}}\n'
        "\n"
        "event: done\n"
        'data: {"type": "done", "data": {"message_id": "abc"}}\n'
        "\n"
    )
    assert [e.kind for e in events] == ["content", "content", "done"]
    assert "".join(e.text for e in events) == "Hello"


def test_decoder_ignores_comments_and_data_without_event() -> None:
    decoder = SseDecoder()
    assert decoder.feed_line(": keepalive") == []
    assert decoder.feed_line('data: {"type": "content", "data": {"text": "x"}}') == []


def test_blank_line_resets_event_type() -> None:
    decoder = SseDecoder()
    decoder.feed_line("event: content")
    decoder.feed_line("")
    assert decoder.feed_line('data: {"type": "content", "data": {"text": "x"}}') == []


def test_malformed_event_does_not_stop_decoding() -> None:
    decoder = SseDecoder()
    events = decoder.feed_text(
        "event: content\n"
        "data: {broken\n"
        "\n"
        "event: content\n"
        'data: {"type": "content", "data": {"text": "ok"}}\n'
    )
    assert [e.text for e in events] == ["ok"]
