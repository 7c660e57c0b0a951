from __future__ import annotations

from ..errors import CancellationError


class CancellationToken:
    """Cooperative stop signal polled before each chunk is applied."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "stopped by user") -> bool:
        """Set the token. Returns False when it was already set."""
        if self._cancelled:
            return False
        self._cancelled = True
        self.reason = reason
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(self.reason or "cancelled")
