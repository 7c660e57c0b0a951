from __future__ import annotations

from ..errors import ValidationError
from ..models import ValidationResult

MAX_MESSAGE_BYTES = 32 * 1024

EMPTY = "Empty"
TOO_LARGE = "TooLarge"


def validate_message(raw: str) -> ValidationResult:
    """Gate outgoing text: trim, reject empty, reject over 32 KiB of UTF-8."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return ValidationResult(valid=False, error=EMPTY, message="Message cannot be empty")

    # lone surrogates from pasted or surrogateescape input still count as 3 bytes
    if len(trimmed.encode("utf-8", "surrogatepass")) > MAX_MESSAGE_BYTES:
        return ValidationResult(
            valid=False,
            error=TOO_LARGE,
            message=f"Message exceeds maximum size of {MAX_MESSAGE_BYTES} bytes",
        )

    return ValidationResult(valid=True, normalized_content=trimmed)


def ensure_valid(raw: str) -> str:
    """Return the normalized text or raise ValidationError."""
    result = validate_message(raw)
    if not result.valid:
        raise ValidationError(result)
    return result.normalized_content or ""
