"""Slash command parser and registry for the chat input."""
from dataclasses import dataclass


@dataclass
class ParsedInput:
    kind: str  # "command" or "message"
    name: str  # command name (lowercase) or empty
    args: str  # remaining args after command name
    raw: str   # original input


COMMANDS = {
    "help": "Show available commands",
    "new": "Start a new chat session",
    "sessions": "List sessions",
    "session": "Switch to a session by id prefix",
    "rename": "Rename the current session",
    "delete": "Delete a session (current when omitted)",
    "stop": "Stop the streaming reply",
    "retry": "Regenerate the last assistant reply",
    "copy": "Copy the last assistant reply",
    "clear": "Clear chat display",
    "login": "Sign in with a provider, or finish from a redirect URL",
    "logout": "Sign out",
    "quit": "Exit the app",
    "exit": "Alias for /quit",
}

ALIASES = {
    "exit": "quit",
    "abort": "stop",
    "rm": "delete",
}

COMMAND_USAGE = {
    "help": "/help",
    "new": "/new",
    "sessions": "/sessions",
    "session": "/session <id>",
    "rename": "/rename <title>",
    "delete": "/delete [id]",
    "stop": "/stop",
    "retry": "/retry",
    "copy": "/copy",
    "clear": "/clear",
    "login": "/login <provider|redirect-url>",
    "logout": "/logout",
    "quit": "/quit",
    "exit": "/exit",
}


def command_suggestions() -> tuple[str, ...]:
    """Return slash commands suitable for Input suggester/autocomplete."""
    return tuple(f"/{name}" for name in COMMANDS)


def format_command_hint(raw: str) -> str | None:
    """Return short contextual help for command-typed input."""
    if not raw.startswith("/"):
        return None

    content = raw[1:]
    if not content:
        return "Slash command mode. Press Tab to autocomplete, Enter to run."

    parts = content.split(None, 1)
    typed = parts[0].lower() if parts and parts[0] else ""
    canonical = ALIASES.get(typed, typed)

    usage = COMMAND_USAGE.get(canonical, f"/{canonical}") if canonical else None
    description = COMMANDS.get(canonical)

    has_args = len(parts) > 1 or content.endswith(" ")
    if description and usage and has_args:
        return f"Usage: {usage}"
    if description and usage:
        return f"{usage} — {description}"

    matches = [name for name in COMMANDS if name.startswith(typed)]
    if matches:
        preview = ", ".join(f"/{name}" for name in matches[:5])
        return f"Matches: {preview}"

    return "Unknown command. Type /help for all commands."


def parse_input(raw: str) -> ParsedInput:
    """Parse raw input into a structured ParsedInput.

    Anything not starting with "/" is a chat message; validation of the
    message text happens later.
    """
    if not raw.startswith("/"):
        return ParsedInput(kind="message", name="", args="", raw=raw)

    content = raw[1:]
    if content and content[0].isspace():
        return ParsedInput(kind="command", name="", args=content.lstrip(), raw=raw)

    parts = content.split(None, 1)
    name = parts[0].lower() if parts else ""
    name = ALIASES.get(name, name)
    args = parts[1].strip() if len(parts) > 1 else ""
    return ParsedInput(kind="command", name=name, args=args, raw=raw)


def format_help() -> str:
    """Return the help panel with aligned commands."""
    width = max(len(name) for name in COMMANDS)

    def row(name: str, desc: str) -> str:
        return f"  [bold #F5A623]/{name:<{width}}[/]  [#A8B5A2]{desc}[/]"

    lines = [
        "[bold #F5A623]Slash Commands[/]",
        "[dim #7B7F87]────────────────────────────────[/]",
    ]
    for name, description in COMMANDS.items():
        lines.append(row(name, description))
    lines.extend(
        [
            "",
            "[bold #F5A623]Keys[/]",
            "[dim #7B7F87]────────────────────────────────[/]",
            "  [bold #C67B5C]escape[/]  [#A8B5A2]Stop the streaming reply[/]",
            "  [bold #C67B5C]ctrl+y[/]  [#A8B5A2]Copy the last assistant reply[/]",
            "  [bold #C67B5C]ctrl+r[/]  [#A8B5A2]Reset after a failure[/]",
        ]
    )
    return "\n".join(lines)
