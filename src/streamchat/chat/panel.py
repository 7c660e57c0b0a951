"""ChatPanel widget — interactive chat view for the active session."""
from __future__ import annotations

from rich.console import RenderableType
from rich.markup import escape as escape_markup
from rich.markdown import Markdown
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static, RichLog, Input
from textual.message import Message as TextualMessage
from textual.suggester import SuggestFromList

from .commands import command_suggestions
from streamchat.models import STATUS_ICONS, Message, MessageStatus, Role, Session


class ChatPanel(Vertical):
    """Header, message log, status line and input for one session."""

    DEFAULT_CSS = """
    ChatPanel {
        height: 100%;
        background: #16213E;
        padding: 0 1;
    }
    #chat-header {
        height: 1;
        background: #1A1A2E;
        color: #F5A623;
        text-style: bold;
        padding: 0 1;
        border-bottom: solid #2A2E3D;
    }
    #chat-log {
        height: 1fr;
        border: round #2A2E3D;
        background: #16213E;
        padding: 0 1;
    }
    #chat-status {
        height: 1;
        color: #A8B5A2;
        padding: 0 1;
    }
    #chat-input {
        height: 3;
        border: round #2A2E3D;
        background: #1A1A2E;
        color: #FFF8E7;
    }
    #chat-input:focus {
        border: round #F5A623;
    }
    """

    _spinner_index = 0
    _SPINNER_FRAMES = ("⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷")
    _SLASH_SUGGESTIONS = command_suggestions()

    class Submit(TextualMessage):
        """Posted when the user submits text in the chat input."""

        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    @staticmethod
    def _safe_markup_text(value: object) -> str:
        """Escape dynamic text before interpolating it into Rich markup."""
        return escape_markup(str(value))

    @staticmethod
    def _render_markdown(value: object) -> Markdown:
        """Render message content with Markdown formatting."""
        return Markdown(str(value), hyperlinks=True)

    def compose(self) -> ComposeResult:
        yield Static("No session", id="chat-header")
        yield RichLog(id="chat-log", wrap=True, highlight=True, markup=True)
        yield Static("[dim #A8B5A2]● ready[/]", id="chat-status")
        yield Input(
            placeholder="Send a message, or type /help",
            id="chat-input",
            suggester=SuggestFromList(self._SLASH_SUGGESTIONS, case_sensitive=False),
        )

    def on_mount(self) -> None:
        self.query_one("#chat-input").focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.value:
            self.post_message(self.Submit(event.input.value))
            event.input.value = ""

    def set_header(self, session: Session | None) -> None:
        header = self.query_one("#chat-header")
        if session is None:
            header.update("[dim #A8B5A2]No session[/]")
            return
        safe_title = self._safe_markup_text(session.title)
        safe_id = self._safe_markup_text(session.id[:8])
        header.update(
            f"[bold #F5A623]{safe_title}[/] [dim #7B7F87]•[/] [#A8B5A2]{safe_id}[/]"
        )

    def set_status(self, text: str) -> None:
        """Update status with calm idle, alive busy, and clear error states."""
        status = self.query_one("#chat-status")
        lower = text.lower()

        if "error" in lower or "went wrong" in lower:
            safe_error = self._safe_markup_text(text.replace("●", "").strip())
            status.update(f"[bold #C67B5C]⚠ {safe_error}[/]")
            return
        if "streaming" in lower or "sending" in lower:
            frame = self._SPINNER_FRAMES[self._spinner_index % len(self._SPINNER_FRAMES)]
            self._spinner_index += 1
            safe_text = self._safe_markup_text(text.replace("●", "").strip())
            status.update(f"[bold #F5A623]{frame}[/] [#A8B5A2]{safe_text}[/]")
            return
        if "copied" in lower:
            status.update("[bold #4ADE80]✓ Copied![/]")
            return

        safe_text = self._safe_markup_text(text)
        status.update(f"[#A8B5A2]{safe_text}[/]")

    def _write_block(self, lines: list[RenderableType]) -> None:
        """Write a formatted block with one blank spacer line."""
        rich_log = self.query_one("#chat-log")
        for line in lines:
            rich_log.write(line)
        rich_log.write("")

    def append_message(self, msg: Message) -> None:
        """Render one message with role-based framing."""
        safe_timestamp = self._safe_markup_text(msg.created_at.astimezone().strftime("%H:%M"))
        if msg.role is Role.USER:
            self._write_block([
                f"[#F5A623]┌─[/] [bold #F5A623]you[/] [dim #7B7F87]{safe_timestamp}[/]",
                self._render_markdown(msg.content),
            ])
            return

        icon = STATUS_ICONS[msg.status]
        lines: list[RenderableType] = [
            f"[#A8B5A2]┌─[/] [bold #A8B5A2]assistant[/] [dim #7B7F87]{safe_timestamp} {icon}[/]",
        ]
        for tool_call in msg.tool_calls:
            safe_tool = self._safe_markup_text(tool_call.tool or "tool")
            lines.append(f"[dim #7B7F87]├─ ⚙ {safe_tool} ({tool_call.status})[/]")
        if msg.content:
            lines.append(self._render_markdown(msg.content))
        elif msg.status is MessageStatus.PENDING:
            lines.append("[dim #7B7F87]thinking...[/]")
        for citation in msg.citations:
            safe_source = self._safe_markup_text(citation.source)
            safe_reference = self._safe_markup_text(citation.reference)
            lines.append(f"[dim #4A90D9]↳ {safe_source}: {safe_reference}[/]")
        if msg.status is MessageStatus.CANCELLED:
            lines.append("[dim #7B7F87]■ stopped[/]")
        elif msg.status is MessageStatus.ERROR:
            safe_error = self._safe_markup_text(msg.error or "Failed to get response")
            lines.append(f"[bold #C67B5C]⚠ {safe_error}[/] [dim #7B7F87](/retry)[/]")
        self._write_block(lines)

    def append_system(self, text: str) -> None:
        safe_text = self._safe_markup_text(text)
        self._write_block([f"[dim #7B7F87]├─ {safe_text}[/]"])

    def append_markup(self, markup: str) -> None:
        """Write pre-formatted markup built by the app (help panel)."""
        self._write_block([markup])

    def show_session(self, session: Session | None) -> None:
        """Clear log and render every message of the session."""
        self.set_header(session)
        rich_log = self.query_one("#chat-log")
        rich_log.clear()
        if session is None:
            self.show_placeholder("No session. Type /new to start one.")
            return
        if not session.messages:
            self.show_placeholder("Send a message to start the conversation.")
            return
        for msg in session.messages:
            self.append_message(msg)

    def clear_log(self) -> None:
        self.query_one("#chat-log").clear()

    def show_placeholder(self, text: str) -> None:
        rich_log = self.query_one("#chat-log")
        safe_placeholder = self._safe_markup_text(text)
        rich_log.clear()
        rich_log.write(f"[dim #7B7F87]┌─[/] [#A8B5A2]{safe_placeholder}[/]")
