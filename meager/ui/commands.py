"""Input line parsing: chat text or slash commands."""

from __future__ import annotations

from ..actions import Connect, Join, Part, Quit, SendText, SwitchTab, UserAction
from ..errors.internal import CommandError


def _make_action(command: str, rest: str) -> UserAction:
    match command.lower():
        case "/connect" | "/server":
            if not rest:
                raise CommandError("No server address provided")
            return Connect(rest)
        case "/join" | "/j":
            if not rest:
                raise CommandError("No channel name provided")
            return Join(rest.split()[0])
        case "/part" | "/leave":
            return Part(rest.split()[0] if rest else None)
        case "/quit":
            return Quit(rest)
        case "/next":
            return SwitchTab(1)
        case "/prev":
            return SwitchTab(-1)
        case _:
            raise CommandError(f"Unsupported command: {command} {rest}".rstrip())


def parse_input(text: str) -> UserAction:
    """Turn one line of user input into an action.

    Lines not starting with ``/`` are chat text; ``//`` escapes a leading
    slash.

    Raises:
        CommandError: Unknown command or missing argument.
    """
    if text.startswith("//"):
        return SendText(text[1:])
    if not text.startswith("/"):
        return SendText(text)
    command, _, rest = text.partition(" ")
    return _make_action(command, rest.strip())
