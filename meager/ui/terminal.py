"""Terminal front end built on blessed.

``TerminalView`` keeps a bounded scrollback per tab and redraws the screen
after each loop iteration. ``KeyboardInput`` is the multiplexer's input
source: it waits for stdin readiness on the running event loop and turns
keystrokes into actions.
"""

from __future__ import annotations

import asyncio
import sys
from collections import deque

from blessed import Terminal
from blessed.keyboard import Keystroke

from ..actions import SwitchTab, UserAction
from ..constants import SCROLLBACK_LINES
from ..errors.internal import CommandError
from ..events import (
    ActionFailed,
    ConnectionClosed,
    MembershipChange,
    MembershipChanged,
    Message,
    ProtocolError,
    Registered,
    ServerText,
    TopicChanged,
    UIEvent,
)
from ..tabs import TabRouter
from .commands import parse_input

BufferKey = tuple[str | None, str | None]
STATUS: BufferKey = (None, None)

_CTCP_ACTION = "\x01ACTION "


def format_event(event: UIEvent) -> tuple[BufferKey, str]:
    """Pick the buffer an event belongs to and render it as one line."""
    match event:
        case Registered(connection=connection, nick=nick):
            return (connection, None), f"Registered as {nick}"
        case Message():
            stamp = event.timestamp.strftime("%H:%M")
            text = event.text
            if text.startswith(_CTCP_ACTION):
                line = f"* {event.sender} {text[len(_CTCP_ACTION):].rstrip(chr(1))}"
            elif event.notice:
                line = f"-{event.sender}- {text}"
            else:
                line = f"<{event.sender}> {text}"
            return (event.connection, event.channel), f"{stamp} {line}"
        case MembershipChanged(change=MembershipChange.JOIN):
            return (event.connection, event.channel), f"{event.nick} joined {event.channel}"
        case MembershipChanged(change=MembershipChange.PART):
            suffix = f" ({event.detail})" if event.detail else ""
            return (event.connection, event.channel), f"{event.nick} left {event.channel}{suffix}"
        case MembershipChanged(change=MembershipChange.QUIT):
            suffix = f" ({event.detail})" if event.detail else ""
            return (event.connection, event.channel), f"{event.nick} quit{suffix}"
        case MembershipChanged(change=MembershipChange.NICK):
            return (event.connection, event.channel), f"{event.nick} is now known as {event.detail}"
        case MembershipChanged():
            return (event.connection, event.channel), f"End of names for {event.channel}"
        case TopicChanged(topic=None):
            return (event.connection, event.channel), f"No topic set for {event.channel}"
        case TopicChanged():
            by = f" (set by {event.setter})" if event.setter else ""
            return (event.connection, event.channel), f"Topic for {event.channel}: {event.topic}{by}"
        case ConnectionClosed(connection=connection, reason=reason, detail=detail):
            why = reason.name.lower().replace("_", " ")
            return STATUS, f"{connection}: connection closed ({why}{': ' + detail if detail else ''})"
        case ProtocolError(connection=connection, detail=detail):
            return (connection, None), f"protocol error: {detail}"
        case ServerText(connection=connection, text=text):
            return (connection, None), text
        case ActionFailed(connection=connection, detail=detail):
            return (connection, None), f"error: {detail}"
    raise TypeError(f"Unexpected event {event!r}")


class TerminalView:
    def __init__(
        self,
        router: TabRouter,
        term: Terminal | None = None,
        scrollback: int = SCROLLBACK_LINES,
    ):
        self.router = router
        self.term = term or Terminal()
        self.scrollback = scrollback
        self.buffers: dict[BufferKey, deque[str]] = {}
        self.input_line = ""

    def active_key(self) -> BufferKey:
        tab = self.router.active_tab
        return (tab.connection, tab.channel) if tab else STATUS

    def add_line(self, key: BufferKey, line: str) -> None:
        buffer = self.buffers.get(key)
        if buffer is None:
            buffer = self.buffers[key] = deque(maxlen=self.scrollback)
        buffer.append(line)

    def notify(self, text: str) -> None:
        self.add_line(self.active_key(), text)
        self.draw()

    def record(self, event: UIEvent) -> None:
        key, line = format_event(event)
        if isinstance(event, ActionFailed):
            key = self.active_key()
        elif isinstance(event, MembershipChanged) and event.change is MembershipChange.NAMES:
            line = self._names_line(event) or line
        self.add_line(key, line)
        if isinstance(event, ConnectionClosed):
            for stale in [k for k in self.buffers if k[0] == event.connection]:
                del self.buffers[stale]

    def _names_line(self, event: MembershipChanged) -> str | None:
        connection = self.router.registry.get_connection(event.connection)
        entry = connection.channels.get(event.channel) if connection else None
        if entry is None:
            return None
        return f"Users on {entry.name}: {' '.join(sorted(entry.members, key=str.lower))}"

    def render(self, events: list[UIEvent]) -> None:
        for event in events:
            self.record(event)
        self.draw()

    def draw(self) -> None:
        term = self.term
        width, height = term.width, term.height
        labels = [
            f"[{tab.label}]" if i == self.router.active else f" {tab.label} "
            for i, tab in enumerate(self.router.tabs)
        ] or ["[status]"]
        out = [term.home + term.clear, term.move_xy(0, 0) + term.reverse("".join(labels)[:width])]
        rows = max(height - 2, 0)
        lines = list(self.buffers.get(self.active_key(), ()))[-rows:] if rows else []
        for y, line in enumerate(lines, start=1):
            out.append(term.move_xy(0, y) + line[:width])
        prompt = "> "
        visible = self.input_line[-max(width - len(prompt) - 1, 0):]
        out.append(term.move_xy(0, height - 1) + prompt + visible)
        print("".join(out), end="", flush=True)


class _Exit:
    pass


EXIT = _Exit()


class KeyboardInput:
    def __init__(self, term: Terminal, view: TerminalView, fd: int | None = None):
        self.term = term
        self.view = view
        self.buffer = ""
        self._fd = sys.stdin.fileno() if fd is None else fd
        self._ready = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None

    def _on_readable(self) -> None:
        self._ready.set()

    async def next_action(self) -> UserAction | None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._loop.add_reader(self._fd, self._on_readable)
        while True:
            key = self.term.inkey(timeout=0)
            if not key:
                self._ready.clear()
                await self._ready.wait()
                continue
            result = self.handle_key(key)
            if result is EXIT:
                return None
            if result is not None:
                return result

    def handle_key(self, key: Keystroke) -> UserAction | _Exit | None:
        name = key.name
        if name == "KEY_ESCAPE":
            return EXIT
        if name == "KEY_TAB":
            return SwitchTab(1)
        if name == "KEY_ENTER":
            line, self.buffer = self.buffer, ""
            self.view.input_line = ""
            if not line.strip():
                self.view.draw()
                return None
            try:
                return parse_input(line)
            except CommandError as e:
                self.view.notify(str(e))
                return None
        if name in ("KEY_BACKSPACE", "KEY_DELETE"):
            self.buffer = self.buffer[:-1]
        elif key.is_sequence:
            return None
        else:
            self.buffer += str(key)
        self.view.input_line = self.buffer
        self.view.draw()
        return None

    def close(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self._fd)
            self._loop = None
