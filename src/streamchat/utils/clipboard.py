from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from collections.abc import Callable

logger = logging.getLogger(__name__)

COPIED_RESET_S = 2.0


def copy_to_clipboard(text: str) -> bool:
    """Copy text to clipboard using platform-specific command fallbacks."""
    for command in _copy_commands_for_platform():
        if _copy_via_subprocess(command, text):
            return True
    return False


def _copy_commands_for_platform() -> list[list[str]]:
    if sys.platform == "darwin":
        return [["pbcopy"]]
    if sys.platform.startswith(("win32", "cygwin", "msys")):
        return [
            ["clip"],
            ["powershell", "-NoProfile", "-Command", "$input | Set-Clipboard"],
        ]
    if sys.platform.startswith("linux"):
        return [
            ["wl-copy"],
            ["xclip", "-selection", "clipboard"],
            ["xsel", "--clipboard", "-i"],
            ["clip.exe"],
        ]
    return []


def _copy_via_subprocess(cmd: list[str], text: str) -> bool:
    """Run subprocess with input text. Returns False on failure."""
    try:
        result = subprocess.run(
            cmd,
            input=text,
            text=True,
            check=True,
            capture_output=True,
        )
        return result.returncode == 0
    except (subprocess.CalledProcessError, FileNotFoundError):
        return False


class ClipboardActionController:
    """Copy with a transient "copied" acknowledgement.

    ``copied`` flips to True on a successful copy and back to False after
    ``reset_after_s``. Copying again before then restarts the countdown;
    only one reset timer is ever pending.
    """

    def __init__(
        self,
        *,
        writer: Callable[[str], bool] = copy_to_clipboard,
        reset_after_s: float = COPIED_RESET_S,
        on_change: Callable[[bool], None] | None = None,
    ) -> None:
        self._writer = writer
        self.reset_after_s = reset_after_s
        self._on_change = on_change
        self._copied = False
        self._reset_timer: asyncio.TimerHandle | None = None

    @property
    def copied(self) -> bool:
        return self._copied

    @property
    def timer_pending(self) -> bool:
        return self._reset_timer is not None

    async def copy(self, text: str) -> bool:
        """Write ``text`` to the clipboard. Never raises."""
        try:
            ok = await asyncio.to_thread(self._writer, text)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Clipboard write failed: %s", exc)
            return False
        if not ok:
            logger.info("No clipboard command succeeded")
            return False

        self._cancel_timer()
        self._set_copied(True)
        loop = asyncio.get_running_loop()
        self._reset_timer = loop.call_later(self.reset_after_s, self._expire)
        return True

    def close(self) -> None:
        self._cancel_timer()

    def _expire(self) -> None:
        self._reset_timer = None
        self._set_copied(False)

    def _cancel_timer(self) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None

    def _set_copied(self, value: bool) -> None:
        if self._copied == value:
            return
        self._copied = value
        if self._on_change is not None:
            try:
                self._on_change(value)
            except Exception:
                logger.exception("Clipboard acknowledgement callback failed")
