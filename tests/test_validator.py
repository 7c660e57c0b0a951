"""Tests for outgoing message validation."""
from __future__ import annotations

import pytest

from streamchat.chat.validator import (
    EMPTY,
    MAX_MESSAGE_BYTES,
    TOO_LARGE,
    ensure_valid,
    validate_message,
)
from streamchat.errors import ValidationError


def test_whitespace_only_is_empty() -> None:
    result = validate_message("   ")
    assert result.valid is False
    assert result.error == EMPTY
    assert result.message == "Message cannot be empty"
    assert result.normalized_content is None


def test_empty_string_is_empty() -> None:
    assert validate_message("").error == EMPTY


def test_valid_message_is_trimmed() -> None:
    result = validate_message("  hello world \n")
    assert result.valid is True
    assert result.error is None
    assert result.normalized_content == "hello world"


def test_exactly_at_ceiling_is_valid() -> None:
    result = validate_message("a" * MAX_MESSAGE_BYTES)
    assert result.valid is True


def test_one_byte_over_ceiling_is_too_large() -> None:
    result = validate_message("a" * (MAX_MESSAGE_BYTES + 1))
    assert result.valid is False
    assert result.error == TOO_LARGE


def test_ceiling_counts_utf8_bytes_not_characters() -> None:
    # "é" is two bytes in UTF-8
    text = "é" * (MAX_MESSAGE_BYTES // 2 + 1)
    assert len(text) < MAX_MESSAGE_BYTES
    assert validate_message(text).error == TOO_LARGE


def test_surrounding_whitespace_does_not_count_toward_ceiling() -> None:
    text = "  " + "a" * MAX_MESSAGE_BYTES + "  "
    assert validate_message(text).valid is True


def test_validation_is_idempotent() -> None:
    first = validate_message("  again  ")
    second = validate_message(first.normalized_content)
    assert first == second


def test_ensure_valid_returns_normalized_text() -> None:
    assert ensure_valid(" hi ") == "hi"


def test_ensure_valid_raises_with_result() -> None:
    with pytest.raises(ValidationError) as exc_info:
        ensure_valid("\t\n")
    assert exc_info.value.result.error == EMPTY
    assert str(exc_info.value) == "Message cannot be empty"


def test_lone_surrogate_is_measured_not_raised() -> None:
    result = validate_message("hi \ud800")
    assert result.valid is True
    assert result.normalized_content == "hi \ud800"


def test_lone_surrogates_count_toward_ceiling() -> None:
    # each lone surrogate is three bytes once encoded
    text = "\udc80" * (MAX_MESSAGE_BYTES // 3 + 1)
    assert validate_message(text).error == TOO_LARGE
