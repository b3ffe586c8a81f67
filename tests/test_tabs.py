from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from meager.actions import Connect, Join, Part, Quit, SendText, SwitchTab
from meager.errors import CommandError, NoActiveTab, StaleTab
from meager.events import ConnectionClosed, MembershipChange, MembershipChanged
from meager.irc.connection import Connection
from meager.irc.models import CloseReason
from meager.tabs import Tab, TabRouter


class FakeRegistry:
    def __init__(self, config, writer) -> None:  # type: ignore[no-untyped-def]
        self.config = config
        self.writer = writer
        self.connections: dict[str, Connection] = {}

    def get_connection(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def connect(self, address: str) -> Connection:
        conn = Connection(address, self.config)
        conn.attach(MagicMock(), self.writer)
        conn.receive(f":srv 001 {conn.nick} :Welcome\r\n".encode())
        conn.take_outgoing()
        conn.drain_events()
        self.connections[conn.id] = conn
        return conn


@pytest.fixture
def registry(config, writer) -> FakeRegistry:  # type: ignore[no-untyped-def]
    return FakeRegistry(config, writer)


@pytest.fixture
def router(registry) -> TabRouter:  # type: ignore[no-untyped-def]
    return TabRouter(registry)


def _join(router: TabRouter, registry: FakeRegistry, server: str, channel: str) -> None:
    conn = registry.connections[server]
    conn.receive(f":{conn.nick}!u@h JOIN {channel}\r\n".encode())
    router.apply(conn.drain_events())


def test_next_tab_wraps_around(router):  # type: ignore[no-untyped-def]
    for name in ("a", "b", "c"):
        router.add_tab(Tab(name), focus=False)
    assert router.active_tab == Tab("a")
    seen = [router.next_tab().label for _ in range(4)]
    assert seen == ["b", "c", "a", "b"]
    assert router.next_tab(-1).label == "a"


def test_next_tab_without_tabs_is_noop(router):  # type: ignore[no-untyped-def]
    assert router.next_tab() is None
    router.dispatch(SwitchTab(1))
    assert router.active_tab is None


def test_connect_adds_focused_server_tab(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(Connect("irc.two.net"))
    assert [t.label for t in router.tabs] == ["irc.one.net", "irc.two.net"]
    assert router.active_tab == Tab("irc.two.net")


def test_channel_tabs_follow_their_server(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(Connect("irc.two.net"))
    _join(router, registry, "irc.one.net", "#alpha")
    assert [t.label for t in router.tabs] == ["irc.one.net", "#alpha", "irc.two.net"]
    assert router.active_tab == Tab("irc.one.net", "#alpha")


def test_join_and_send_go_to_active_connection(router, registry, writer):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(Join("#alpha"))
    conn = registry.connections["irc.one.net"]
    assert conn.take_outgoing() == [b"JOIN #alpha\r\n"]
    _join(router, registry, "irc.one.net", "#alpha")
    router.dispatch(SendText("hello"))
    assert conn.take_outgoing() == [b"PRIVMSG #alpha hello\r\n"]


def test_send_text_needs_channel_tab(router):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    with pytest.raises(CommandError):
        router.dispatch(SendText("hello"))
    with pytest.raises(CommandError):
        router.dispatch(Part())


def test_no_active_tab(router):  # type: ignore[no-untyped-def]
    with pytest.raises(NoActiveTab):
        router.dispatch(Join("#alpha"))


def test_stale_connection_tab_is_removed(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    _join(router, registry, "irc.one.net", "#alpha")
    del registry.connections["irc.one.net"]
    with pytest.raises(StaleTab):
        router.dispatch(SendText("hello"))
    assert router.tabs == []


def test_stale_channel_tab_is_removed(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    _join(router, registry, "irc.one.net", "#alpha")
    registry.connections["irc.one.net"].channels.clear()
    with pytest.raises(StaleTab):
        router.dispatch(SendText("hello"))
    assert router.tabs == [Tab("irc.one.net")]


def test_own_part_closes_channel_tab(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    _join(router, registry, "irc.one.net", "#Alpha")
    router.dispatch(Part())
    conn = registry.connections["irc.one.net"]
    assert conn.take_outgoing() == [b"PART #Alpha\r\n"]
    conn.receive(b":bob!u@h PART #alpha\r\n")
    router.apply(conn.drain_events())
    assert router.tabs == [Tab("irc.one.net")]


def test_connection_closed_drops_all_its_tabs(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(Connect("irc.two.net"))
    _join(router, registry, "irc.one.net", "#alpha")
    _join(router, registry, "irc.one.net", "#beta")
    router.apply(
        [ConnectionClosed(connection="irc.one.net", reason=CloseReason.SOCKET_ERROR)]
    )
    assert router.tabs == [Tab("irc.two.net")]
    assert router.active_tab == Tab("irc.two.net")


def test_join_event_for_closed_connection_adds_no_tab(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    registry.connections["irc.one.net"].quit()
    router.apply(
        [
            MembershipChanged(
                connection="irc.one.net",
                channel="#late",
                nick="bob",
                change=MembershipChange.JOIN,
                is_self=True,
            )
        ]
    )
    assert Tab("irc.one.net", "#late") not in router.tabs


def test_quit_targets_active_connection(router, registry):  # type: ignore[no-untyped-def]
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(Quit("later"))
    conn = registry.connections["irc.one.net"]
    assert conn.take_outgoing() == [b"QUIT later\r\n"]
    assert conn.close_reason is CloseReason.USER_QUIT


def test_dispatch_logs_action_kind(router, caplog):  # type: ignore[no-untyped-def]
    caplog.set_level(logging.DEBUG, logger="meager")
    router.dispatch(Connect("irc.one.net"))
    router.dispatch(SwitchTab(1))
    messages = [r.message for r in caplog.records]
    assert any("Dispatched Connect" in m for m in messages)
    assert any("Dispatched SwitchTab" in m for m in messages)
