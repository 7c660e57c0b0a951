from __future__ import annotations

from collections.abc import Awaitable, Callable

from .commands import COMMANDS, parse_input
from .runtime_types import CommandResult
from .stream_controller import StreamController


KNOWN_COMMANDS = set(COMMANDS)


class ChatCommandHandlers:
    def __init__(
        self,
        *,
        streams: StreamController,
        state: object,
        on_system: Callable[[str], None],
        on_known_command: Callable[[str, str], Awaitable[CommandResult] | CommandResult] | None,
    ) -> None:
        self._streams = streams
        self._state = state
        self._on_system = on_system
        self._on_known_command = on_known_command

    async def handle(self, raw: str) -> bool:
        parsed = parse_input(raw)
        if parsed.kind != "command":
            return False
        name, args = parsed.name, parsed.args
        if not name:
            return True

        if name == "stop":
            await self._handle_stop()
            return True

        if name in KNOWN_COMMANDS and self._on_known_command is not None:
            result = self._on_known_command(name, args)
            if isinstance(result, CommandResult):
                outcome = result
            else:
                outcome = await result
            if not outcome.ok and outcome.message:
                self._on_system(outcome.message)
            return outcome.handled

        self._on_system(f"Unknown command: /{name}. Type /help for all commands.")
        return True

    async def _handle_stop(self) -> None:
        session_id = getattr(self._state, "current_session_id", None)
        if not session_id:
            self._on_system("stop failed: no active session")
            return
        if not await self._streams.stop(session_id):
            self._on_system("Nothing to stop.")
