"""Events handed from the multiplexer to the UI layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto

from .irc.models import CloseReason


class MembershipChange(Enum):
    JOIN = auto()
    PART = auto()
    QUIT = auto()
    NICK = auto()
    NAMES = auto()


@dataclass(frozen=True, slots=True)
class Registered:
    connection: str
    nick: str


@dataclass(frozen=True, slots=True)
class Message:
    """Chat text. ``channel`` is None for private messages and notices
    addressed to us, which belong on the server tab."""

    connection: str
    channel: str | None
    sender: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)
    notice: bool = False
    own: bool = False


@dataclass(frozen=True, slots=True)
class MembershipChanged:
    connection: str
    channel: str
    nick: str
    change: MembershipChange
    is_self: bool = False
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class TopicChanged:
    connection: str
    channel: str
    topic: str | None
    setter: str | None = None


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    connection: str
    reason: CloseReason
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ProtocolError:
    connection: str
    detail: str


@dataclass(frozen=True, slots=True)
class ServerText:
    connection: str
    text: str


@dataclass(frozen=True, slots=True)
class ActionFailed:
    connection: str | None
    detail: str


UIEvent = (
    Registered
    | Message
    | MembershipChanged
    | TopicChanged
    | ConnectionClosed
    | ProtocolError
    | ServerText
    | ActionFailed
)
