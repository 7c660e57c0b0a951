from __future__ import annotations

import asyncio
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from streamchat.utils.clipboard import ClipboardActionController, copy_to_clipboard


class TestCopyToClipboard:
    """Tests for cross-platform clipboard copy functionality."""

    @patch("streamchat.utils.clipboard.sys")
    @patch("streamchat.utils.clipboard.subprocess.run")
    def test_macos_uses_pbcopy(self, mock_run, mock_sys):
        """On macOS, should use pbcopy with stdin."""
        mock_sys.platform = "darwin"
        mock_run.return_value = MagicMock(returncode=0)
        result = copy_to_clipboard("test text")
        mock_run.assert_called_once()
        call_args = mock_run.call_args
        assert call_args[0][0] == ["pbcopy"]
        assert call_args[1]["input"] == "test text"
        assert call_args[1]["text"] is True
        assert result is True

    @patch("streamchat.utils.clipboard.sys")
    @patch("streamchat.utils.clipboard.subprocess.run")
    def test_linux_falls_back_to_xclip_when_wl_copy_fails(self, mock_run, mock_sys):
        mock_sys.platform = "linux"
        mock_run.side_effect = [
            subprocess.CalledProcessError(1, ["wl-copy"]),
            MagicMock(returncode=0),
        ]
        result = copy_to_clipboard("test text")
        assert mock_run.call_count == 2
        assert mock_run.call_args_list[1][0][0] == ["xclip", "-selection", "clipboard"]
        assert result is True

    @patch("streamchat.utils.clipboard.sys")
    @patch("streamchat.utils.clipboard.subprocess.run")
    def test_missing_tools_return_false(self, mock_run, mock_sys):
        mock_sys.platform = "linux"
        mock_run.side_effect = FileNotFoundError()
        assert copy_to_clipboard("x") is False
        assert mock_run.call_count == 4

    @patch("streamchat.utils.clipboard.sys")
    @patch("streamchat.utils.clipboard.subprocess.run")
    def test_unknown_platform_copies_nothing(self, mock_run, mock_sys):
        mock_sys.platform = "plan9"
        assert copy_to_clipboard("x") is False
        mock_run.assert_not_called()


class TestClipboardActionController:
    @pytest.mark.asyncio
    async def test_copy_writes_exact_text_and_resets(self) -> None:
        written: list[str] = []

        def writer(text: str) -> bool:
            written.append(text)
            return True

        clipboard = ClipboardActionController(writer=writer, reset_after_s=0.05)
        assert await clipboard.copy("hello") is True
        assert written == ["hello"]
        assert clipboard.copied is True
        assert clipboard.timer_pending is True

        await asyncio.sleep(0.1)
        assert clipboard.copied is False
        assert clipboard.timer_pending is False

    @pytest.mark.asyncio
    async def test_second_copy_rearms_single_timer(self) -> None:
        clipboard = ClipboardActionController(writer=lambda text: True, reset_after_s=0.2)
        await clipboard.copy("a")
        await asyncio.sleep(0.12)
        await clipboard.copy("b")
        await asyncio.sleep(0.12)
        # first timer would have fired by now
        assert clipboard.copied is True
        await asyncio.sleep(0.2)
        assert clipboard.copied is False

    @pytest.mark.asyncio
    async def test_failed_copy_leaves_state_untouched(self) -> None:
        clipboard = ClipboardActionController(writer=lambda text: False)
        assert await clipboard.copy("x") is False
        assert clipboard.copied is False
        assert clipboard.timer_pending is False

    @pytest.mark.asyncio
    async def test_writer_exception_never_raises(self) -> None:
        def writer(text: str) -> bool:
            raise OSError("no display")

        clipboard = ClipboardActionController(writer=writer)
        assert await clipboard.copy("x") is False
        assert clipboard.copied is False

    @pytest.mark.asyncio
    async def test_on_change_reports_both_edges(self) -> None:
        changes: list[bool] = []
        clipboard = ClipboardActionController(
            writer=lambda text: True, reset_after_s=0.02, on_change=changes.append
        )
        await clipboard.copy("x")
        await asyncio.sleep(0.06)
        assert changes == [True, False]

    @pytest.mark.asyncio
    async def test_failing_on_change_is_isolated(self) -> None:
        def on_change(value: bool) -> None:
            raise RuntimeError("widget gone")

        clipboard = ClipboardActionController(writer=lambda text: True, on_change=on_change)
        assert await clipboard.copy("x") is True
        assert clipboard.copied is True
        clipboard.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_timer(self) -> None:
        clipboard = ClipboardActionController(writer=lambda text: True, reset_after_s=0.02)
        await clipboard.copy("x")
        clipboard.close()
        assert clipboard.timer_pending is False
        await asyncio.sleep(0.05)
        assert clipboard.copied is True
