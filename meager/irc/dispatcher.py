"""Turns decoded messages into typed inbound events.

``classify`` is the only place that looks at command strings; the
connection state machine matches on the returned variant.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors.internal import MalformedMessage
from .codec import ProtocolMessage, split_prefix


@dataclass(frozen=True, slots=True)
class Ping:
    token: str


@dataclass(frozen=True, slots=True)
class Pong:
    token: str


@dataclass(frozen=True, slots=True)
class PrivMsg:
    sender: str
    target: str
    text: str
    notice: bool = False
    from_server: bool = False


@dataclass(frozen=True, slots=True)
class Join:
    nick: str
    channel: str


@dataclass(frozen=True, slots=True)
class Part:
    nick: str
    channel: str
    reason: str | None = None
    kicked_by: str | None = None


@dataclass(frozen=True, slots=True)
class Topic:
    channel: str
    topic: str | None
    setter: str | None = None


@dataclass(frozen=True, slots=True)
class Nick:
    old: str
    new: str


@dataclass(frozen=True, slots=True)
class Quit:
    nick: str
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Error:
    text: str


@dataclass(frozen=True, slots=True)
class Welcome:
    nick: str
    text: str


@dataclass(frozen=True, slots=True)
class ISupport:
    tokens: dict[str, str]
    text: str


@dataclass(frozen=True, slots=True)
class NameReply:
    channel: str
    nicks: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class EndOfNames:
    channel: str


@dataclass(frozen=True, slots=True)
class NickInUse:
    nick: str
    code: str


@dataclass(frozen=True, slots=True)
class RegistrationRejected:
    code: str
    text: str


@dataclass(frozen=True, slots=True)
class Unknown:
    message: ProtocolMessage

    @property
    def text(self) -> str:
        params = self.message.params
        if self.message.command.isdigit():
            # numerics start with our own nick
            params = params[1:]
        return " ".join(params) if params else self.message.command


Inbound = (
    Ping
    | Pong
    | PrivMsg
    | Join
    | Part
    | Topic
    | Nick
    | Quit
    | Error
    | Welcome
    | ISupport
    | NameReply
    | EndOfNames
    | NickInUse
    | RegistrationRejected
    | Unknown
)

RPL_WELCOME = "001"
RPL_ISUPPORT = "005"
RPL_NOTOPIC = "331"
RPL_TOPIC = "332"
RPL_NAMREPLY = "353"
RPL_ENDOFNAMES = "366"
NICK_COLLISION_CODES = frozenset({"433", "436", "437"})
FATAL_REGISTRATION_CODES = frozenset({"432", "463", "464", "465"})


def _need(message: ProtocolMessage, count: int) -> tuple[str, ...]:
    if len(message.params) < count:
        raise MalformedMessage(
            f"{message.command} needs {count} parameter(s)",
            data={"command": message.command, "params": len(message.params)},
        )
    return message.params


def _source_nick(message: ProtocolMessage) -> str:
    if not message.prefix:
        raise MalformedMessage(
            f"{message.command} without prefix", data={"command": message.command}
        )
    return split_prefix(message.prefix).nick


def _parse_isupport(params: tuple[str, ...]) -> dict[str, str]:
    tokens: dict[str, str] = {}
    # first param is our nick, last is the human readable trailer
    for token in params[1:-1]:
        key, _, value = token.partition("=")
        tokens[key.upper()] = value
    return tokens


def classify(message: ProtocolMessage) -> Inbound:  # noqa: C901
    params = message.params
    match message.command.upper():
        case "PING":
            return Ping(token=params[-1] if params else "")
        case "PONG":
            return Pong(token=params[-1] if params else "")
        case "PRIVMSG" | "NOTICE" as command:
            target, text = _need(message, 2)[:2]
            prefix = split_prefix(message.prefix) if message.prefix else None
            return PrivMsg(
                sender=prefix.nick if prefix else "",
                target=target,
                text=text,
                notice=command == "NOTICE",
                from_server=prefix is None or prefix.is_server,
            )
        case "JOIN":
            return Join(nick=_source_nick(message), channel=_need(message, 1)[0])
        case "PART":
            channel = _need(message, 1)[0]
            reason = params[1] if len(params) > 1 else None
            return Part(nick=_source_nick(message), channel=channel, reason=reason)
        case "KICK":
            channel, victim = _need(message, 2)[:2]
            reason = params[2] if len(params) > 2 else None
            return Part(
                nick=victim,
                channel=channel,
                reason=reason,
                kicked_by=_source_nick(message),
            )
        case "TOPIC":
            channel, topic = _need(message, 2)[:2]
            return Topic(channel=channel, topic=topic, setter=_source_nick(message))
        case "NICK":
            return Nick(old=_source_nick(message), new=_need(message, 1)[0])
        case "QUIT":
            return Quit(nick=_source_nick(message), reason=params[0] if params else None)
        case "ERROR":
            return Error(text=params[-1] if params else "")
        case "001":
            nick, *_ = _need(message, 1)
            return Welcome(nick=nick, text=params[-1])
        case "005":
            return ISupport(tokens=_parse_isupport(params), text=" ".join(params[1:]))
        case "331":
            return Topic(channel=_need(message, 2)[1], topic=None)
        case "332":
            return Topic(channel=_need(message, 3)[1], topic=params[2])
        case "353":
            # <nick> <symbol> <channel> :<nicks>
            _need(message, 3)
            return NameReply(channel=params[-2], nicks=tuple(params[-1].split()))
        case "366":
            return EndOfNames(channel=_need(message, 2)[1])
        case code if code in NICK_COLLISION_CODES:
            return NickInUse(nick=params[1] if len(params) > 1 else "", code=code)
        case code if code in FATAL_REGISTRATION_CODES:
            return RegistrationRejected(code=code, text=params[-1] if params else code)
        case _:
            return Unknown(message=message)
