"""One server connection: transport plus protocol state machine."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Iterator

from ..config.model import ClientConfig
from ..constants import (
    MAX_LINE_LENGTH,
    MAX_NICK_RETRIES,
    MAX_WRITE_BUFFER,
    NICK_SUFFIX,
    REGISTRATION_TIMEOUT,
)
from ..errors.handling import log_error
from ..errors.internal import NickInUse as NickCollision
from ..errors.internal import (
    ClientError,
    CommandError,
    ConnectionFailure,
    FramingError,
    MalformedMessage,
    NotRegistered,
    RegistrationFailed,
)
from ..events import (
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
from ..logs.logger import logger
from .codec import ProtocolMessage, decode, encode
from .dispatcher import (
    EndOfNames,
    Error,
    Inbound,
    ISupport,
    Join,
    NameReply,
    Nick,
    NickInUse,
    Part,
    Ping,
    Pong,
    PrivMsg,
    Quit,
    RegistrationRejected,
    Topic,
    Unknown,
    Welcome,
    classify,
)
from .framer import LineFramer
from .heartbeat import ConnectionHeartbeat, HeartbeatAction
from .membership import MembershipTracker
from .models import CloseReason, RegistrationState

# Commands that only make sense once the server has accepted us.
CHANNEL_COMMANDS = frozenset(
    {"JOIN", "PART", "PRIVMSG", "NOTICE", "TOPIC", "NAMES", "KICK", "MODE", "INVITE"}
)


def parse_address(address: str, default_port: int) -> tuple[str, int]:
    """Split ``host``, ``host:port`` or ``[v6addr]:port``."""
    address = address.strip()
    port_text = ""
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port_text = rest.removeprefix(":")
    elif address.count(":") == 1:
        host, _, port_text = address.partition(":")
    else:
        host = address
    if not host:
        raise CommandError("No server address provided")
    if not port_text:
        return host, default_port
    try:
        port = int(port_text)
    except ValueError:
        raise CommandError(f"Invalid port in {address!r}") from None
    if not 0 < port < 65536:
        raise CommandError(f"Invalid port in {address!r}")
    return host, port


class Connection:  # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        address: str,
        config: ClientConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
        registration_timeout: float = REGISTRATION_TIMEOUT,
        max_nick_retries: int = MAX_NICK_RETRIES,
        max_line_length: int = MAX_LINE_LENGTH,
        max_write_buffer: int = MAX_WRITE_BUFFER,
    ):
        self.host, self.port = parse_address(address, config.port)
        self.id = self.host if self.port == config.port else f"{self.host}:{self.port}"
        self.config = config
        self.nick = config.nick
        self.state = RegistrationState.CONNECTING
        self.close_reason: CloseReason | None = None
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self.framer = LineFramer(max_line_length)
        self.membership = MembershipTracker(self.id)
        self.heartbeat = ConnectionHeartbeat(self)
        self.pending_joins: set[str] = set()
        self.max_nick_retries = max_nick_retries
        self.max_write_buffer = max_write_buffer
        self._clock = clock
        self._nick_retries = 0
        self._server_error: str | None = None
        self._priority: deque[bytes] = deque()
        self._outbox: deque[bytes] = deque()
        self._events: list[UIEvent] = []
        self.created_at = clock()
        self.registration_deadline = self.created_at + registration_timeout

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.state.name} nick={self.nick}>"

    @property
    def channels(self) -> MembershipTracker:
        return self.membership

    @property
    def last_activity(self) -> float:
        return self.heartbeat.last_activity

    @property
    def is_open(self) -> bool:
        return self.state in (RegistrationState.REGISTERING, RegistrationState.REGISTERED)

    def is_self(self, nick: str) -> bool:
        return self.membership.same(nick, self.nick)

    def _set_state(self, new_state: RegistrationState) -> None:
        if self.state != new_state:
            logger.log_event(
                "irc",
                "state_change",
                level=logging.DEBUG,
                connection=self.id,
                old_state=self.state.name,
                new_state=new_state.name,
            )
            self.state = new_state

    def _emit(self, event: UIEvent) -> None:
        self._events.append(event)

    def drain_events(self) -> list[UIEvent]:
        events, self._events = self._events, []
        return events

    # -- outgoing --------------------------------------------------------
    def _queue(self, command: str, *params: str, priority: bool = False) -> None:
        data = encode(ProtocolMessage(command, params))
        (self._priority if priority else self._outbox).append(data)

    def take_outgoing(self) -> list[bytes]:
        """Pop everything queued, PONG replies first."""
        data = [*self._priority, *self._outbox]
        self._priority.clear()
        self._outbox.clear()
        return data

    def flush(self) -> None:
        """Hand queued bytes to the transport without waiting for the peer.

        A peer that stops reading lets the transport buffer grow; past
        ``max_write_buffer`` unsent bytes the connection is failed.
        """
        if self.writer is None or not (self._priority or self._outbox):
            return
        data = b"".join(self.take_outgoing())
        try:
            self.writer.write(data)
        except OSError as e:
            self.fail(CloseReason.SOCKET_ERROR, f"write failed: {e}")
            return
        unsent = self.writer.transport.get_write_buffer_size()
        if unsent > self.max_write_buffer:
            self.fail(CloseReason.SOCKET_ERROR, f"peer is not reading ({unsent} bytes unsent)")

    def send(self, command: str, *params: str) -> None:
        """Encode and queue a command.

        Raises:
            ConnectionFailure: The connection is closing.
            NotRegistered: Channel-scoped command before registration.
            MessageTooLong: Encoded form exceeds the wire limit.
            MalformedMessage: A parameter cannot be carried by the grammar.
        """
        if self.state in (RegistrationState.CLOSING, RegistrationState.CLOSED):
            raise ConnectionFailure(f"{self.id} is closing", data={"connection": self.id})
        if command.upper() in CHANNEL_COMMANDS and self.state is not RegistrationState.REGISTERED:
            raise NotRegistered(
                f"Cannot send {command.upper()} before registration completes",
                data={"connection": self.id},
            )
        self._queue(command, *params)

    def join(self, channel: str) -> None:
        # The channel entry is created when the server echoes our JOIN.
        self.send("JOIN", channel)
        self.pending_joins.add(self.membership.fold(channel))
        logger.log_event("irc", "join_requested", connection=self.id, channel=channel)

    def part(self, channel: str, reason: str | None = None) -> None:
        if reason:
            self.send("PART", channel, reason)
        else:
            self.send("PART", channel)

    def privmsg(self, target: str, text: str) -> None:
        self.send("PRIVMSG", target, text)
        entry = self.membership.get(target)
        self._emit(
            Message(
                connection=self.id,
                channel=entry.name if entry else None,
                sender=self.nick,
                text=text,
                own=True,
            )
        )

    def quit(self, message: str = "") -> None:
        """Leave the server. Valid in every state."""
        if self.state in (RegistrationState.CLOSING, RegistrationState.CLOSED):
            return
        if self.writer is not None:
            self._queue_quit(message)
        self._close(CloseReason.USER_QUIT, message)

    def _queue_quit(self, message: str) -> None:
        # Falls back to the configured message, then to a bare QUIT.
        for text in (message, self.config.quit_message):
            if not text:
                continue
            try:
                self._queue("QUIT", text)
                return
            except ClientError as e:
                log_error(
                    "Quit message dropped",
                    e,
                    {"connection": self.id},
                    level=logging.WARNING,
                )
        self._queue("QUIT")

    def fail(self, reason: CloseReason, detail: str) -> None:
        self._close(reason, detail)

    def _registration_failed(
        self, detail: str, error: type[RegistrationFailed] = RegistrationFailed
    ) -> None:
        log_error(
            "Registration failed",
            error(detail, data={"connection": self.id, "nick": self.nick}),
            level=logging.WARNING,
        )
        self._close(CloseReason.REGISTRATION_FAILED, detail)

    def _close(self, reason: CloseReason, detail: str) -> None:
        if self.state in (RegistrationState.CLOSING, RegistrationState.CLOSED):
            return
        self.close_reason = reason
        self._set_state(RegistrationState.CLOSING)
        logger.log_event(
            "irc",
            "closing",
            level=logging.INFO if reason is CloseReason.USER_QUIT else logging.WARNING,
            connection=self.id,
            reason=reason.name,
            detail=detail,
        )
        self._emit(ConnectionClosed(connection=self.id, reason=reason, detail=detail))

    # -- lifecycle -------------------------------------------------------
    def attach(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Transport is up: send registration and wait for 001."""
        if self.state is not RegistrationState.CONNECTING:
            writer.close()
            return
        self.reader, self.writer = reader, writer
        self.heartbeat.touch(self._clock())
        self._set_state(RegistrationState.REGISTERING)
        try:
            self._queue("NICK", self.nick)
            self._queue("USER", self.config.user, "0", "*", self.config.real)
        except ClientError as e:
            self._registration_failed(f"cannot register: {e}")
            return
        logger.log_event(
            "irc", "registration_sent", level=logging.DEBUG, connection=self.id, nick=self.nick
        )

    def teardown(self) -> None:
        """Flush what is left and release the socket. Ends in CLOSED.

        The transport finishes sending in the background; nothing here
        waits on the peer.
        """
        if self.state is RegistrationState.CLOSED:
            return
        if self.state is not RegistrationState.CLOSING:
            self._close(CloseReason.SOCKET_ERROR, "torn down")
        leftover = self.framer.flush()
        if leftover:
            self._handle_line(leftover)
        self.flush()
        if self.writer is not None:
            try:
                self.writer.close()
            except OSError as e:
                logger.log_event(
                    "irc", "close_error", level=logging.DEBUG, connection=self.id, error=str(e)
                )
        self.reader = self.writer = None
        self.membership.clear()
        self.pending_joins.clear()
        self._priority.clear()
        self._outbox.clear()
        self._set_state(RegistrationState.CLOSED)
        logger.log_event("irc", "disconnected", connection=self.id)

    def connection_lost(self, detail: str) -> None:
        if self._server_error:
            detail = f"{detail} ({self._server_error})"
        self.fail(CloseReason.SOCKET_ERROR, detail)

    # -- timers ----------------------------------------------------------
    def next_deadline(self) -> float | None:
        if self.state in (RegistrationState.CONNECTING, RegistrationState.REGISTERING):
            return self.registration_deadline
        if self.state is RegistrationState.REGISTERED:
            return self.heartbeat.deadline()
        return None

    def check_timers(self) -> None:
        now = self._clock()
        if self.state in (RegistrationState.CONNECTING, RegistrationState.REGISTERING):
            if now >= self.registration_deadline:
                self.fail(CloseReason.TIMEOUT, "registration timed out")
            return
        if self.state is not RegistrationState.REGISTERED:
            return
        action = self.heartbeat.check(now)
        if action is HeartbeatAction.PROBE:
            self._queue("PING", self.heartbeat.start_probe(now))
        elif action is HeartbeatAction.TIMEOUT:
            self.fail(CloseReason.TIMEOUT, "no reply to keepalive")

    # -- incoming --------------------------------------------------------
    def receive(self, data: bytes) -> None:
        if self.state is RegistrationState.CLOSED:
            return
        self.heartbeat.touch(self._clock())
        self._consume(self.framer.feed(data))

    def _consume(self, lines: Iterator[bytes]) -> None:
        while True:
            try:
                for raw in lines:
                    self._handle_line(raw)
                return
            except FramingError as e:
                self._protocol_error(e)
                lines = self.framer.feed(b"")

    def _handle_line(self, raw: bytes) -> None:
        if not raw.startswith(b"PING"):
            logger.log_event("irc", "raw", level=logging.DEBUG, connection=self.id, raw=raw)
        try:
            inbound = classify(decode(raw))
        except MalformedMessage as e:
            self._protocol_error(e, raw=raw)
            return
        try:
            self._handle(inbound)
        except ClientError as e:
            # e.g. a PONG token we cannot put back on the wire
            self._protocol_error(e, raw=raw)

    def _protocol_error(self, error: ClientError, raw: bytes | None = None) -> None:
        logger.log_event(
            "irc",
            "protocol_error",
            level=logging.WARNING,
            connection=self.id,
            error=str(error),
            error_type=type(error).__name__,
            raw=raw,
        )
        self._emit(ProtocolError(connection=self.id, detail=str(error)))

    def _handle(self, inbound: Inbound) -> None:  # noqa: C901
        match inbound:
            case Ping(token=token):
                self._queue("PONG", token, priority=True)
            case Pong():
                pass
            case Welcome(nick=nick, text=text):
                if self.state is RegistrationState.REGISTERING:
                    self.nick = nick
                    self._set_state(RegistrationState.REGISTERED)
                    logger.log_event("irc", "registered", connection=self.id, nick=nick)
                    self._emit(Registered(connection=self.id, nick=nick))
                self._emit(ServerText(connection=self.id, text=text))
            case NickInUse():
                self._on_nick_in_use(inbound)
            case RegistrationRejected(code=code, text=text):
                self._emit(ServerText(connection=self.id, text=f"{code} {text}"))
                if self.state is RegistrationState.REGISTERING:
                    self._registration_failed(text)
            case ISupport(tokens=tokens, text=text):
                if "CASEMAPPING" in tokens:
                    self.membership.set_casemapping(tokens["CASEMAPPING"])
                self._emit(ServerText(connection=self.id, text=text))
            case Error(text=text):
                self._server_error = text
                self._emit(ServerText(connection=self.id, text=f"ERROR: {text}"))
                if self.state is RegistrationState.REGISTERING:
                    self._registration_failed(text)
            case Join():
                self._on_join(inbound)
            case Part():
                self._on_part(inbound)
            case Quit(nick=nick, reason=reason):
                for entry in self.membership.quit(nick):
                    self._membership(entry.name, nick, MembershipChange.QUIT, detail=reason)
            case Nick():
                self._on_nick(inbound)
            case Topic(channel=channel, topic=topic, setter=setter):
                entry = self.membership.set_topic(channel, topic)
                if entry is not None:
                    self._emit(
                        TopicChanged(
                            connection=self.id, channel=entry.name, topic=entry.topic, setter=setter
                        )
                    )
            case NameReply(channel=channel, nicks=nicks):
                self.membership.names(channel, nicks)
            case EndOfNames(channel=channel):
                entry = self.membership.get(channel)
                if entry is not None:
                    self._membership(entry.name, "", MembershipChange.NAMES)
            case PrivMsg():
                self._on_privmsg(inbound)
            case Unknown():
                self._emit(ServerText(connection=self.id, text=inbound.text))

    def _on_nick_in_use(self, inbound: NickInUse) -> None:
        if self.state is not RegistrationState.REGISTERING:
            self._emit(ServerText(connection=self.id, text=f"Nick {inbound.nick} is already in use"))
            return
        if self._nick_retries >= self.max_nick_retries:
            self._registration_failed(
                f"nick {self.nick} in use after {self._nick_retries} retries",
                NickCollision,
            )
            return
        self._nick_retries += 1
        rejected = self.nick
        self.nick = f"{self.nick}{NICK_SUFFIX}"
        logger.log_event(
            "irc",
            "nick_in_use",
            level=logging.WARNING,
            connection=self.id,
            rejected=rejected,
            retry=self.nick,
        )
        self._queue("NICK", self.nick)

    def _on_join(self, inbound: Join) -> None:
        is_self = self.is_self(inbound.nick)
        if is_self:
            self.pending_joins.discard(self.membership.fold(inbound.channel))
        entry = self.membership.joined(inbound.channel, inbound.nick, is_self=is_self)
        if entry is not None:
            self._membership(entry.name, inbound.nick, MembershipChange.JOIN, is_self=is_self)

    def _on_part(self, inbound: Part) -> None:
        is_self = self.is_self(inbound.nick)
        entry = self.membership.parted(inbound.channel, inbound.nick, is_self=is_self)
        if entry is None:
            return
        detail = inbound.reason
        if inbound.kicked_by:
            detail = f"kicked by {inbound.kicked_by}" + (f": {detail}" if detail else "")
        self._membership(entry.name, inbound.nick, MembershipChange.PART, is_self=is_self, detail=detail)

    def _on_nick(self, inbound: Nick) -> None:
        is_self = self.is_self(inbound.old)
        if is_self:
            self.nick = inbound.new
            self._emit(ServerText(connection=self.id, text=f"You are now known as {inbound.new}"))
        for entry in self.membership.renamed(inbound.old, inbound.new):
            self._membership(
                entry.name, inbound.old, MembershipChange.NICK, is_self=is_self, detail=inbound.new
            )

    def _on_privmsg(self, inbound: PrivMsg) -> None:
        entry = self.membership.get(inbound.target)
        if entry is not None:
            channel: str | None = entry.name
        elif inbound.from_server or not inbound.sender:
            self._emit(ServerText(connection=self.id, text=inbound.text))
            return
        else:
            channel = None
        self._emit(
            Message(
                connection=self.id,
                channel=channel,
                sender=inbound.sender,
                text=inbound.text,
                notice=inbound.notice,
            )
        )

    def _membership(
        self,
        channel: str,
        nick: str,
        change: MembershipChange,
        *,
        is_self: bool = False,
        detail: str | None = None,
    ) -> None:
        self._emit(
            MembershipChanged(
                connection=self.id,
                channel=channel,
                nick=nick,
                change=change,
                is_self=is_self,
                detail=detail,
            )
        )
