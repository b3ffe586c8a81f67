from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from meager.config.model import ClientConfig
from meager.constants import IDLE_TIMEOUT, PING_TIMEOUT, REGISTRATION_TIMEOUT
from meager.errors import (
    CommandError,
    ConnectionFailure,
    MessageTooLong,
    NickInUse,
    NotRegistered,
    RegistrationFailed,
)
from meager.events import (
    ConnectionClosed,
    MembershipChange,
    MembershipChanged,
    Message,
    ProtocolError,
    Registered,
    ServerText,
    TopicChanged,
)
from meager.irc.connection import Connection, parse_address
from meager.irc.models import CloseReason, RegistrationState


def _attached(config, clock, writer, **kwargs) -> Connection:  # type: ignore[no-untyped-def]
    conn = Connection("irc.example.net", config, clock=clock, **kwargs)
    conn.attach(MagicMock(), writer)
    return conn


def _registered(config, clock, writer, **kwargs) -> Connection:  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer, **kwargs)
    conn.receive(b":srv 001 bob :Welcome to the network\r\n")
    conn.take_outgoing()
    conn.drain_events()
    return conn


def _joined(config, clock, writer, channel: str = "#test") -> Connection:  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.join(channel)
    conn.receive(f":bob!b@h JOIN {channel}\r\n".encode())
    conn.take_outgoing()
    conn.drain_events()
    return conn


def test_registration_handshake(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer)
    assert conn.state is RegistrationState.REGISTERING
    assert conn.take_outgoing() == [b"NICK bob\r\n", b"USER bobby 0 * :Bob Example\r\n"]

    conn.receive(b":srv 001 bob :Welcome to the network\r\n")
    assert conn.state is RegistrationState.REGISTERED
    events = conn.drain_events()
    assert events[0] == Registered(connection="irc.example.net", nick="bob")
    assert ServerText(connection="irc.example.net", text="Welcome to the network") in events


def test_nick_in_use_retries_with_suffix(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer)
    conn.take_outgoing()
    conn.receive(b":srv 433 * bob :Nickname is already in use\r\n")
    assert conn.take_outgoing() == [b"NICK bob_\r\n"]
    conn.receive(b":srv 001 bob_ :Welcome\r\n")
    assert conn.state is RegistrationState.REGISTERED
    assert conn.nick == "bob_"


def test_nick_retries_are_bounded(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer, max_nick_retries=2)
    for _ in range(3):
        conn.receive(b":srv 433 * x :Nickname is already in use\r\n")
    assert conn.state is RegistrationState.CLOSING
    closed = [e for e in conn.drain_events() if isinstance(e, ConnectionClosed)]
    assert closed[0].reason is CloseReason.REGISTRATION_FAILED


def test_pong_goes_out_before_queued_commands(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.join("#a")
    conn.receive(b"PING :abc123\r\n")
    out = conn.take_outgoing()
    assert out[0] == b"PONG abc123\r\n"
    assert out[1] == b"JOIN #a\r\n"


def test_channel_commands_rejected_before_registration(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer)
    conn.take_outgoing()
    with pytest.raises(NotRegistered):
        conn.join("#a")
    with pytest.raises(NotRegistered):
        conn.privmsg("#a", "hello")
    assert conn.take_outgoing() == []


def test_join_is_confirmed_by_server_echo(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.join("#test")
    assert "#test" not in conn.channels
    assert "#test" in conn.pending_joins
    conn.receive(b":bob!b@h JOIN #test\r\n")
    assert "#test" in conn.channels
    assert not conn.pending_joins
    assert conn.drain_events() == [
        MembershipChanged(
            connection="irc.example.net",
            channel="#test",
            nick="bob",
            change=MembershipChange.JOIN,
            is_self=True,
        )
    ]


def test_own_part_and_kick_remove_channel(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer, "#test")
    conn.receive(b":bob!b@h PART #test\r\n")
    assert "#test" not in conn.channels

    conn = _joined(config, clock, writer, "#other")
    conn.receive(b":op!o@h KICK #other bob :flood\r\n")
    assert "#other" not in conn.channels
    (event,) = conn.drain_events()
    assert event.change is MembershipChange.PART
    assert event.detail == "kicked by op: flood"


def test_others_membership_and_names(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    conn.receive(
        b":srv 353 bob = #test :@bob alice +carol\r\n"
        b":srv 366 bob #test :End of /NAMES list.\r\n"
        b":dave!d@h JOIN #test\r\n"
        b":alice!a@h NICK ally\r\n"
        b":carol!c@h QUIT :bye\r\n"
    )
    assert conn.channels.get("#test").members == {"bob", "ally", "dave"}
    changes = [e.change for e in conn.drain_events() if isinstance(e, MembershipChanged)]
    assert changes == [
        MembershipChange.NAMES,
        MembershipChange.JOIN,
        MembershipChange.NICK,
        MembershipChange.QUIT,
    ]


def test_topic_on_join(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    conn.receive(b":srv 332 bob #test :Welcome all\r\n")
    assert conn.channels.get("#test").topic == "Welcome all"
    assert conn.drain_events() == [
        TopicChanged(connection="irc.example.net", channel="#test", topic="Welcome all")
    ]


def test_messages_are_routed(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    conn.receive(
        b":alice!a@h PRIVMSG #TEST :hi all\r\n"
        b":alice!a@h PRIVMSG bob :psst\r\n"
        b":irc.example.net NOTICE bob :server notice\r\n"
    )
    channel_msg, private_msg, notice = conn.drain_events()
    assert isinstance(channel_msg, Message) and channel_msg.channel == "#test"
    assert isinstance(private_msg, Message) and private_msg.channel is None
    assert notice == ServerText(connection="irc.example.net", text="server notice")


def test_privmsg_is_echoed_locally(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    conn.privmsg("#test", "hello world")
    assert conn.take_outgoing() == [b"PRIVMSG #test :hello world\r\n"]
    (echo,) = conn.drain_events()
    assert echo.own and echo.sender == "bob" and echo.channel == "#test"


def test_oversized_message_rejected_locally(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    with pytest.raises(MessageTooLong):
        conn.privmsg("#test", "x" * 600)
    assert conn.take_outgoing() == []
    assert conn.drain_events() == []


def test_malformed_and_oversized_lines_keep_connection(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer, max_line_length=64)
    conn.receive(b":only-a-prefix\r\n" + b"x" * 100 + b"\r\n:srv 372 bob :- motd\r\n")
    assert conn.state is RegistrationState.REGISTERED
    events = conn.drain_events()
    assert [type(e) for e in events] == [ProtocolError, ProtocolError, ServerText]
    assert events[-1].text == "- motd"


def test_keepalive_probe_then_timeout(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    clock.advance(IDLE_TIMEOUT)
    conn.check_timers()
    (probe,) = conn.take_outgoing()
    assert probe.startswith(b"PING meager-")
    clock.advance(PING_TIMEOUT)
    conn.check_timers()
    assert conn.state is RegistrationState.CLOSING
    assert conn.drain_events() == [
        ConnectionClosed(
            connection="irc.example.net", reason=CloseReason.TIMEOUT, detail="no reply to keepalive"
        )
    ]


def test_any_traffic_answers_keepalive(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    clock.advance(IDLE_TIMEOUT)
    conn.check_timers()
    conn.receive(b":srv NOTICE bob :still here\r\n")
    clock.advance(PING_TIMEOUT - 1)
    conn.check_timers()
    assert conn.state is RegistrationState.REGISTERED
    assert conn.next_deadline() == conn.last_activity + IDLE_TIMEOUT


def test_registration_timeout(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer)
    assert conn.next_deadline() == clock() + REGISTRATION_TIMEOUT
    clock.advance(REGISTRATION_TIMEOUT)
    conn.check_timers()
    assert conn.close_reason is CloseReason.TIMEOUT


def test_server_error_during_registration(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _attached(config, clock, writer)
    conn.receive(b"ERROR :Closing Link: bob (Banned)\r\n")
    assert conn.close_reason is CloseReason.REGISTRATION_FAILED


def test_connection_lost_mentions_server_error(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.receive(b"ERROR :Closing Link: bob (Ping timeout)\r\n")
    conn.drain_events()
    conn.connection_lost("connection closed by server")
    (closed,) = conn.drain_events()
    assert closed.reason is CloseReason.SOCKET_ERROR
    assert "Ping timeout" in closed.detail


def test_isupport_casemapping_applies(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.receive(b":srv 005 bob CASEMAPPING=rfc1459 :are supported by this server\r\n")
    assert conn.membership.casemapping == "rfc1459"
    conn.receive(b":bob!b@h JOIN #a[b]\r\n")
    assert "#A{B}" in conn.channels


def test_quit_closes_and_blocks_further_sends(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    conn.quit("bye")
    assert conn.take_outgoing() == [b"QUIT bye\r\n"]
    assert conn.state is RegistrationState.CLOSING
    assert conn.drain_events() == [
        ConnectionClosed(connection="irc.example.net", reason=CloseReason.USER_QUIT, detail="bye")
    ]
    conn.quit()
    assert conn.drain_events() == []
    with pytest.raises(ConnectionFailure):
        conn.send("PRIVMSG", "#test", "too late")


def test_teardown_flushes_and_clears(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    writer.clear()
    conn.quit()
    conn.teardown()
    assert writer.lines == ["QUIT Leaving"]
    assert writer.closed
    assert conn.state is RegistrationState.CLOSED
    assert len(conn.channels) == 0
    assert conn.reader is None and conn.writer is None


def test_write_failure_closes_connection(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    writer.fail_with = ConnectionResetError("reset by peer")
    conn.privmsg("#test", "hi")
    conn.flush()
    assert conn.close_reason is CloseReason.SOCKET_ERROR


def test_peer_that_stops_reading_is_dropped(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _joined(config, clock, writer)
    writer.stall(unsent=100)
    conn.privmsg("#test", "still here")
    conn.flush()
    assert conn.state is RegistrationState.REGISTERED
    writer.stall()
    conn.privmsg("#test", "anyone?")
    conn.flush()
    assert conn.close_reason is CloseReason.SOCKET_ERROR
    closed = [e for e in conn.drain_events() if isinstance(e, ConnectionClosed)]
    assert "not reading" in closed[0].detail


def test_quit_with_unencodable_message_still_closes(config, clock, writer):  # type: ignore[no-untyped-def]
    conn = _registered(config, clock, writer)
    conn.quit("x" * 600)
    assert conn.state is RegistrationState.CLOSING
    assert conn.close_reason is CloseReason.USER_QUIT
    assert conn.take_outgoing() == [b"QUIT Leaving\r\n"]


def test_quit_falls_back_to_bare_quit(clock, writer):  # type: ignore[no-untyped-def]
    config = ClientConfig.model_construct(nick="bob", quit_message="y" * 600)
    conn = _registered(config, clock, writer)
    conn.quit("z" * 600)
    assert conn.take_outgoing() == [b"QUIT\r\n"]
    assert conn.state is RegistrationState.CLOSING


def test_unencodable_registration_fails_only_this_connection(clock, writer):  # type: ignore[no-untyped-def]
    config = ClientConfig.model_construct(nick="n" * 600)
    conn = _attached(config, clock, writer)
    assert conn.state is RegistrationState.CLOSING
    assert conn.close_reason is CloseReason.REGISTRATION_FAILED
    (closed,) = conn.drain_events()
    assert "cannot register" in closed.detail
    assert conn.take_outgoing() == []


def test_exhausted_nick_retries_report_nick_in_use(config, clock, writer, monkeypatch):  # type: ignore[no-untyped-def]
    reported = []
    monkeypatch.setattr(
        "meager.irc.connection.log_error",
        lambda message, error, *args, **kwargs: reported.append(error),
    )
    conn = _attached(config, clock, writer, max_nick_retries=0)
    conn.receive(b":srv 433 * bob :Nickname is already in use\r\n")
    assert conn.close_reason is CloseReason.REGISTRATION_FAILED
    (error,) = reported
    assert isinstance(error, NickInUse)
    assert isinstance(error, RegistrationFailed)
    assert error.data["nick"] == "bob"


def test_parse_address():
    assert parse_address("irc.example.net", 6667) == ("irc.example.net", 6667)
    assert parse_address("irc.example.net:6697", 6667) == ("irc.example.net", 6697)
    assert parse_address("[::1]:7000", 6667) == ("::1", 7000)
    assert parse_address("[2001:db8::1]", 6667) == ("2001:db8::1", 6667)
    for bad in ("", "host:abc", "host:0", ":6667"):
        with pytest.raises(CommandError):
            parse_address(bad, 6667)


def test_connection_id_includes_non_default_port(config):  # type: ignore[no-untyped-def]
    assert Connection("irc.example.net", config).id == "irc.example.net"
    assert Connection("irc.example.net:6697", config).id == "irc.example.net:6697"
