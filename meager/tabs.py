"""Tab bookkeeping and dispatch of user actions to connections.

Tabs hold lookup keys (connection id, channel name), never the objects
themselves. A key that no longer resolves is a stale tab: it is removed on
the spot and the action fails with ``StaleTab``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from .actions import Connect, Join, Part, Quit, SendText, SwitchTab, UserAction
from .errors.internal import CommandError, NoActiveTab, StaleTab
from .events import ConnectionClosed, MembershipChange, MembershipChanged, UIEvent
from .irc.connection import Connection
from .irc.models import RegistrationState
from .logs.logger import logger


class ConnectionRegistry(Protocol):
    def get_connection(self, connection_id: str) -> Connection | None: ...

    def connect(self, address: str) -> Connection: ...


@dataclass(frozen=True, slots=True)
class Tab:
    connection: str
    channel: str | None = None

    @property
    def is_channel(self) -> bool:
        return self.channel is not None

    @property
    def label(self) -> str:
        return self.channel or self.connection


class TabRouter:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry
        self.tabs: list[Tab] = []
        self.active = 0

    @property
    def active_tab(self) -> Tab | None:
        return self.tabs[self.active] if self.tabs else None

    def next_tab(self, direction: int = 1) -> Tab | None:
        if self.tabs:
            self.active = (self.active + direction) % len(self.tabs)
        return self.active_tab

    def add_tab(self, tab: Tab, *, focus: bool = True) -> Tab:
        index = self._index(tab)
        if index is None:
            if tab.is_channel:
                # keep channel tabs right after their server's other tabs
                index = self._insert_position(tab.connection)
                self.tabs.insert(index, tab)
                if len(self.tabs) > 1 and index <= self.active:
                    self.active += 1
            else:
                self.tabs.append(tab)
                index = len(self.tabs) - 1
        if focus:
            self.active = index
        return self.tabs[index]

    def drop_connection(self, connection_id: str) -> None:
        self._remove(lambda tab: tab.connection == connection_id)

    def drop_channel(self, connection_id: str, channel: str) -> None:
        same = self._comparator(connection_id)
        self._remove(
            lambda tab: tab.connection == connection_id
            and tab.channel is not None
            and same(tab.channel, channel)
        )

    def resolve(self, tab: Tab | None = None) -> tuple[Connection, str | None]:
        """Find the connection (and canonical channel name) behind a tab."""
        tab = tab or self.active_tab
        if tab is None:
            raise NoActiveTab("No tab is open; use /connect first")
        connection = self.registry.get_connection(tab.connection)
        if connection is None or connection.state in (
            RegistrationState.CLOSING,
            RegistrationState.CLOSED,
        ):
            self.drop_connection(tab.connection)
            raise StaleTab(f"{tab.connection} is no longer connected", data={"connection": tab.connection})
        if tab.channel is None:
            return connection, None
        entry = connection.channels.get(tab.channel)
        if entry is None:
            self.drop_channel(tab.connection, tab.channel)
            raise StaleTab(
                f"Not in {tab.channel} anymore",
                data={"connection": tab.connection, "channel": tab.channel},
            )
        return connection, entry.name

    def dispatch(self, action: UserAction) -> None:
        """Forward a user action to the connection behind the active tab."""
        match action:
            case SwitchTab(direction=direction):
                self.next_tab(direction)
            case Connect(address=address):
                connection = self.registry.connect(address)
                self.add_tab(Tab(connection.id))
            case Join(channel=channel):
                connection, _ = self.resolve()
                connection.join(channel)
            case Part(channel=channel):
                connection, current = self.resolve()
                target = channel or current
                if not target:
                    raise CommandError("No channel name provided")
                connection.part(target)
            case SendText(text=text):
                connection, current = self.resolve()
                if current is None:
                    raise CommandError("Messages can only be sent from a channel tab")
                connection.privmsg(current, text)
            case Quit(message=message):
                connection, _ = self.resolve()
                connection.quit(message)
        logger.log_event(
            "tabs", "dispatched", level=logging.DEBUG, kind=type(action).__name__
        )

    def apply(self, events: Iterable[UIEvent]) -> None:
        """Open and close tabs in step with the events of one iteration."""
        for event in events:
            match event:
                case MembershipChanged(change=MembershipChange.JOIN, is_self=True):
                    connection = self.registry.get_connection(event.connection)
                    if connection is not None and connection.is_open:
                        self.add_tab(Tab(event.connection, event.channel))
                case MembershipChanged(change=MembershipChange.PART, is_self=True):
                    self.drop_channel(event.connection, event.channel)
                case ConnectionClosed(connection=connection_id):
                    self.drop_connection(connection_id)

    def _index(self, tab: Tab) -> int | None:
        same = self._comparator(tab.connection)
        for i, existing in enumerate(self.tabs):
            if existing.connection != tab.connection:
                continue
            if existing.channel is None and tab.channel is None:
                return i
            if existing.channel and tab.channel and same(existing.channel, tab.channel):
                return i
        return None

    def _insert_position(self, connection_id: str) -> int:
        position = len(self.tabs)
        for i, tab in enumerate(self.tabs):
            if tab.connection == connection_id:
                position = i + 1
        return position

    def _comparator(self, connection_id: str) -> Callable[[str, str], bool]:
        connection = self.registry.get_connection(connection_id)
        if connection is None:
            return lambda a, b: a == b
        return connection.membership.same

    def _remove(self, predicate: Callable[[Tab], bool]) -> None:
        active_tab = self.active_tab
        kept = [tab for tab in self.tabs if not predicate(tab)]
        if len(kept) == len(self.tabs):
            return
        self.tabs = kept
        if active_tab in kept:
            self.active = kept.index(active_tab)
        else:
            self.active = min(self.active, max(len(kept) - 1, 0))
