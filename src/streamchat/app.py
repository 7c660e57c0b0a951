"""ChatApp — Textual terminal client for the streaming chat backend."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging

import httpx
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.theme import Theme
from textual.widgets import Footer, Header, Input

from .auth import LOGIN_PATH, AuthContext, AuthSessionBridge, parse_redirect_params
from .chat.command_handlers import ChatCommandHandlers
from .chat.commands import format_command_hint, format_help, parse_input
from .chat.panel import ChatPanel
from .chat.runtime_types import CommandResult, StoreEvent
from .chat.session_store import SessionStore
from .chat.stream_controller import StreamController
from .client import OAUTH_PROVIDERS, ChatApiClient
from .config import ClientConfig, load_config
from .errors import (
    AlreadyStreamingError,
    ChatClientError,
    IntegrityError,
    InvalidTitleError,
    ValidationError,
)
from .models import ApiStatus, MessageStatus, Session, format_elapsed
from .telemetry import TelemetryReporter
from .utils.clipboard import ClipboardActionController, copy_to_clipboard
from .utils.time import relative_time

logger = logging.getLogger(__name__)

FAILURE_STATUS = "Something went wrong. Press ctrl+r to reset."


class ChatApp(App[None]):
    """Chat client: one active session on screen, any number streaming.

    All state lives in the SessionStore; the panel is re-rendered from
    store events.
    """

    TITLE = "💬 StreamChat"
    BINDINGS = [
        Binding("escape", "stop_stream", "Stop", priority=True),
        Binding("ctrl+y", "copy_last", "Copy", priority=True),
        Binding("ctrl+r", "reset", "Reset", priority=True),
        Binding("ctrl+n", "new_session", "New Session"),
    ]

    CSS = """
Screen {
    background: #1A1A2E;
    color: #FFF8E7;
}
Header {
    background: #1A1A2E;
    color: #F5A623;
    text-style: bold;
    border-bottom: solid #2A2E3D;
}
ChatPanel {
    background: #16213E;
}
Footer {
    background: #1A1A2E;
    color: #A8B5A2;
    border-top: solid #2A2E3D;
}
"""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        clipboard_writer: Callable[[str], bool] = copy_to_clipboard,
    ) -> None:
        super().__init__()
        self._config = config or load_config()
        self._http_transport = http_transport
        self._clipboard_writer = clipboard_writer
        self.current_session_id: str | None = None
        self.failure_active = False
        self.api_status: ApiStatus | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield ChatPanel()
        yield Footer()

    def on_mount(self) -> None:
        """Build the runtime, then fetch identity and sessions."""
        logger.info("ChatApp mounted — backend %s", self._config.backend_url)
        self.auth = AuthContext()
        self.reporter = TelemetryReporter(self._config)
        self.api = ChatApiClient(
            self._config, self.auth, reporter=self.reporter, transport=self._http_transport
        )
        self.store = SessionStore(auth=self.auth)
        self.streams = StreamController(
            self.store,
            self.api.stream_message,
            reporter=self.reporter,
            on_tick=self._on_stream_tick,
        )
        self.clipboard_actions = ClipboardActionController(
            writer=self._clipboard_writer, on_change=self._on_copied_change
        )
        self._chat_commands = ChatCommandHandlers(
            streams=self.streams,
            state=self,
            on_system=self._append_system_message,
            on_known_command=self._run_known_chat_command,
        )
        self._bridge = self._new_bridge()
        self._unsubscribe = self.store.subscribe(self._on_store_event)
        self.register_theme(Theme(
            name="hearth",
            primary="#F5A623",
            background="#1A1A2E",
            surface="#16213E",
            accent="#F5A623",
            warning="#FFD93D",
            error="#C67B5C",
            success="#4ADE80",
            secondary="#4A90D9",
            foreground="#FFF8E7",
            panel="#16213E",
        ))
        self.theme = "hearth"
        self._run_guarded(self._bootstrap, group="session_load", exclusive=True)

    # -- helpers ---------------------------------------------------------

    @property
    def panel(self) -> ChatPanel:
        return self.query_one(ChatPanel)

    @property
    def current_session(self) -> Session | None:
        if self.current_session_id is None:
            return None
        return self.store.get(self.current_session_id)

    def _new_bridge(self) -> AuthSessionBridge:
        return AuthSessionBridge(
            self.auth, refresh_identity=self._refresh_identity, navigate=self._navigate
        )

    @staticmethod
    def _format_error_status(detail: str | None) -> str:
        """Format a compact user-facing error status string."""
        clean = " ".join((detail or "").split())
        if not clean:
            return "● error"
        if len(clean) > 90:
            clean = f"{clean[:87].rstrip()}..."
        return f"● error: {clean}"

    def _append_system_message(self, content: str) -> None:
        self.panel.append_system(content)

    async def _report_failure(self, exc: BaseException, where: str) -> None:
        """Surface an unexpected failure as the recoverable error state."""
        logger.error("Unexpected failure in %s", where, exc_info=exc)
        self.failure_active = True
        await self.reporter.capture_exception(exc, {"where": where})
        self.panel.set_status(FAILURE_STATUS)
        self.notify(FAILURE_STATUS, severity="error")

    def _run_guarded(self, func: Callable, *args: object, group: str, exclusive: bool = False) -> None:
        async def _guarded() -> None:
            try:
                await func(*args)
            except Exception as exc:  # noqa: BLE001
                await self._report_failure(exc, group)

        self.run_worker(_guarded, exclusive=exclusive, group=group)

    # -- rendering -------------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind in ("sessions_loaded", "session_deleted"):
            if self.current_session is None:
                sessions = self.store.list_sessions()
                self.current_session_id = sessions[0].id if sessions else None
            self._render_current()
            return
        if event.session_id == self.current_session_id:
            self._render_current()

    def _render_current(self) -> None:
        if self.failure_active:
            return
        self.panel.show_session(self.current_session)
        self._refresh_status()

    def _refresh_status(self) -> None:
        session = self.current_session
        if session is None:
            self.panel.set_status("● ready")
            return
        elapsed = self.streams.elapsed(session.id)
        if elapsed is not None:
            self.panel.set_status(f"● streaming {format_elapsed(elapsed)}")
            return
        last = session.last_assistant_message
        if last is not None and last.status is MessageStatus.ERROR:
            self.panel.set_status(self._format_error_status(last.error))
        elif last is not None and last.status is MessageStatus.CANCELLED:
            self.panel.set_status("● stopped")
        else:
            self.panel.set_status("● ready")

    def _on_stream_tick(self, session_id: str, elapsed: float) -> None:
        if session_id == self.current_session_id and not self.failure_active:
            self.panel.set_status(f"● streaming {format_elapsed(elapsed)}")

    def _on_copied_change(self, copied: bool) -> None:
        if self.failure_active:
            return
        if copied:
            self.panel.set_status("● copied")
        else:
            self._refresh_status()

    # -- backend sync ----------------------------------------------------

    async def _bootstrap(self) -> None:
        await self._refresh_identity()
        await self._refresh_api_status()
        await self._load_sessions()

    async def _refresh_api_status(self) -> None:
        try:
            self.api_status = await self.api.get_status()
        except ChatClientError as exc:
            logger.info("Backend status unavailable: %s", exc)
            self.api_status = None
        self.sub_title = self.api_status.label if self.api_status else "API unavailable"

    async def _refresh_identity(self) -> None:
        try:
            self.auth.user = await self.api.get_me()
        except ChatClientError as exc:
            logger.info("Not signed in: %s", exc)
            self.auth.user = None
        self.reporter.set_user(self.auth.user.tenant_id if self.auth.user else None)

    async def _load_sessions(self) -> None:
        try:
            sessions = await self.api.list_sessions()
        except ChatClientError as exc:
            logger.warning("Session list unavailable: %s", exc)
            self._append_system_message(f"Backend unavailable: {exc}")
            sessions = None
        if sessions is not None:
            self.store.load(sessions)
        if not len(self.store):
            self.store.create()
        if self.current_session is None:
            self.current_session_id = self.store.list_sessions()[0].id
        self._render_current()
        await self._load_history(self.current_session_id)

    async def _load_history(self, session_id: str | None) -> None:
        session = self.store.get(session_id) if session_id else None
        if session is None or session.messages:
            return
        try:
            remote = await self.api.get_session(session_id)
        except ChatClientError as exc:
            logger.warning("History for %s unavailable: %s", session_id, exc)
            return
        self.store.load_messages(session_id, remote.messages)

    async def _create_session(self) -> Session:
        try:
            remote = await self.api.create_session()
        except ChatClientError as exc:
            logger.warning("Backend session create failed: %s", exc)
            self._append_system_message(f"Working offline: {exc}")
            session = self.store.create()
        else:
            session = self.store.create(remote.id, remote.title, remote.created_at)
        self._switch_session(session.id)
        return session

    def _switch_session(self, session_id: str) -> None:
        self.current_session_id = session_id
        self._render_current()

    def _resolve_session(self, prefix: str) -> Session | str:
        """Find a session by id prefix; returns an error string otherwise."""
        matches = [s for s in self.store.list_sessions() if s.id.startswith(prefix)]
        if not matches:
            return f"No session matches '{prefix}'."
        if len(matches) > 1:
            return f"'{prefix}' is ambiguous ({len(matches)} sessions)."
        return matches[0]

    # -- sending ---------------------------------------------------------

    def _send_user_chat_message(self, text: str) -> None:
        self._run_guarded(self._send_chat_message, text, group="chat_send")

    async def _send_chat_message(self, text: str) -> None:
        session = self.current_session
        if session is None:
            session = await self._create_session()
        try:
            await self.streams.send(session.id, text)
        except ValidationError as exc:
            self.panel.set_status(self._format_error_status(exc.result.message))
        except AlreadyStreamingError:
            self._append_system_message("A reply is still streaming. Press escape to stop it.")

    # -- commands --------------------------------------------------------

    def _run_chat_command(self, raw: str) -> None:
        self._run_guarded(self._run_chat_command_async, raw, group="chat_command", exclusive=True)

    async def _run_chat_command_async(self, raw: str) -> None:
        try:
            await self._chat_commands.handle(raw)
        except ChatClientError as exc:
            self._append_system_message(f"Command failed: {exc}")

    async def _run_known_chat_command(self, name: str, args: str) -> CommandResult:
        if name == "help":
            self.panel.append_markup(format_help())
            return CommandResult(ok=True)

        if name in {"exit", "quit"}:
            self.exit()
            return CommandResult(ok=True)

        if name == "clear":
            self.panel.clear_log()
            return CommandResult(ok=True)

        if name == "new":
            await self._create_session()
            return CommandResult(ok=True)

        if name == "sessions":
            return self._list_sessions_command()

        if name == "session":
            if not args:
                return CommandResult(ok=False, message="Usage: /session <id>")
            found = self._resolve_session(args)
            if isinstance(found, str):
                return CommandResult(ok=False, message=found)
            self._switch_session(found.id)
            await self._load_history(found.id)
            return CommandResult(ok=True)

        if name == "rename":
            return await self._rename_command(args)

        if name == "delete":
            return await self._delete_command(args)

        if name == "retry":
            return await self._retry_command()

        if name == "copy":
            await self._copy_last()
            return CommandResult(ok=True)

        if name == "login":
            return await self._login_command(args)

        if name == "logout":
            await self._logout()
            return CommandResult(ok=True)

        return CommandResult(ok=False, message=f"Unsupported command: /{name}")

    def _list_sessions_command(self) -> CommandResult:
        sessions = self.store.list_sessions()
        if not sessions:
            self._append_system_message("no sessions")
            return CommandResult(ok=True)
        now = datetime.now(timezone.utc)
        lines = ["sessions:"]
        for session in sessions:
            marker = "▸" if session.id == self.current_session_id else " "
            live = " ●" if self.streams.is_streaming(session.id) else ""
            lines.append(
                f"{marker} {session.id[:8]}  {session.title}  "
                f"({relative_time(session.updated_at, now)}){live}"
            )
        self._append_system_message("\n".join(lines))
        return CommandResult(ok=True)

    async def _rename_command(self, args: str) -> CommandResult:
        session = self.current_session
        if session is None:
            return CommandResult(ok=False, message="rename failed: no active session")
        try:
            self.store.rename(session.id, args)
        except InvalidTitleError as exc:
            return CommandResult(ok=False, message=f"rename failed: {exc}")
        try:
            await self.api.update_session(session.id, session.title)
        except ChatClientError as exc:
            self._append_system_message(f"Renamed locally; backend sync failed: {exc}")
        return CommandResult(ok=True)

    async def _delete_command(self, args: str) -> CommandResult:
        if args:
            found = self._resolve_session(args)
            if isinstance(found, str):
                return CommandResult(ok=False, message=found)
            session_id = found.id
        elif self.current_session_id is not None:
            session_id = self.current_session_id
        else:
            return CommandResult(ok=False, message="delete failed: no active session")

        await self.store.delete(session_id)
        self._append_system_message(f"Deleted session {session_id[:8]}.")
        try:
            await self.api.delete_session(session_id)
        except ChatClientError as exc:
            self._append_system_message(f"Backend delete failed: {exc}")
        return CommandResult(ok=True)

    async def _login_command(self, args: str) -> CommandResult:
        if not args:
            providers = "|".join(OAUTH_PROVIDERS)
            return CommandResult(
                ok=False, message=f"Usage: /login <{providers}> or /login <redirect-url>"
            )
        if args.lower() in OAUTH_PROVIDERS:
            url = self.api.login_url(args)
            self._append_system_message(
                f"Open this URL to sign in, then paste the redirect URL with /login:\n{url}"
            )
            return CommandResult(ok=True)
        await self._bridge.handle_callback(args)
        return CommandResult(ok=True)

    async def _retry_command(self) -> CommandResult:
        session = self.current_session
        last = session.last_assistant_message if session is not None else None
        if session is None or last is None:
            return CommandResult(ok=False, message="Nothing to retry.")
        try:
            await self.streams.retry(session.id, last.id)
        except IntegrityError as exc:
            return CommandResult(ok=False, message=f"retry failed: {exc}")
        return CommandResult(ok=True)

    async def _copy_last(self) -> None:
        session = self.current_session
        last = session.last_assistant_message if session is not None else None
        if last is None or not last.content:
            self.notify("Nothing to copy", severity="warning")
            return
        if not await self.clipboard_actions.copy(last.content):
            self.notify("Failed to copy to clipboard", severity="error")

    # -- auth ------------------------------------------------------------

    def _navigate(self, destination: str) -> None:
        if destination.startswith(LOGIN_PATH):
            error = parse_redirect_params(destination).get("error", "unknown error")
            self._append_system_message(
                f"Sign-in failed: {error}. Use /login <redirect-url> to try again."
            )
            return
        who = self.auth.user.email or self.auth.user.name if self.auth.user else "anonymous"
        self._append_system_message(f"Signed in as {who}.")
        self._run_guarded(self._load_sessions, group="session_load", exclusive=True)

    async def _logout(self) -> None:
        await self.streams.close()
        try:
            await self.api.logout()
        except ChatClientError as exc:
            logger.warning("Backend logout failed: %s", exc)
        self.auth.close()
        await self.api.aclose()
        self.auth = AuthContext()
        self.auth.add_teardown(self.store.clear)
        self.api.auth = self.auth
        self._bridge = self._new_bridge()
        self.current_session_id = None
        self._render_current()
        self._append_system_message("Signed out.")

    # -- events and actions ----------------------------------------------

    def on_chat_panel_submit(self, event: ChatPanel.Submit) -> None:
        """Handle chat input submission (commands or regular message)."""
        text = event.text.strip()
        if not text:
            return
        if self.failure_active:
            self.notify(FAILURE_STATUS, severity="warning")
            return

        parsed = parse_input(text)
        if parsed.kind == "command":
            self._run_chat_command(parsed.raw)
            return
        self._send_user_chat_message(event.text)

    def on_input_changed(self, event: Input.Changed) -> None:
        """Show lightweight slash-command hints while typing."""
        if event.input.id != "chat-input" or self.failure_active or not hasattr(self, "streams"):
            return
        if self.current_session_id and self.streams.is_streaming(self.current_session_id):
            return
        hint = format_command_hint(event.value)
        if hint:
            self.panel.set_status(f"● {hint}")
            return
        self._refresh_status()

    def action_stop_stream(self) -> None:
        session_id = self.current_session_id
        if session_id is None or not self.streams.is_streaming(session_id):
            return
        self._run_guarded(self.streams.stop, session_id, group="chat_stop")

    def action_copy_last(self) -> None:
        self._run_guarded(self._copy_last, group="clipboard")

    def action_new_session(self) -> None:
        self._run_chat_command("/new")

    def action_reset(self) -> None:
        """Leave the failure state and rebuild the view from the store."""
        if not self.failure_active:
            return
        logger.info("Resetting after failure")
        self.failure_active = False
        self._render_current()
        self.notify("Reset complete")
        self._run_guarded(self._load_sessions, group="session_load", exclusive=True)

    async def on_unmount(self) -> None:
        """Stop live streams and close HTTP clients on exit."""
        if not hasattr(self, "streams"):
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.streams.close()
        self.clipboard_actions.close()
        logger.info("Closing backend client")
        await self.api.aclose()
        await self.reporter.aclose()
