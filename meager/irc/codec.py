"""IRC message decoding and encoding.

Grammar handled (RFC 1459 section 2.3.1)::

    [ "@" tags SPACE ] [ ":" prefix SPACE ] command { SPACE middle } [ SPACE ":" trailing ]

Tags are accepted on input and dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..constants import MAX_MESSAGE_LENGTH
from ..errors.internal import MalformedMessage, MessageTooLong

_COMMAND_RE = re.compile(r"^(?:[A-Za-z]+|[0-9]{3})$")
_FORBIDDEN = ("\r", "\n", "\0")
ENCODING = "utf-8"


@dataclass(frozen=True, slots=True)
class ProtocolMessage:
    command: str
    params: tuple[str, ...] = ()
    prefix: str | None = None

    def __post_init__(self) -> None:
        if not self.command:
            raise MalformedMessage("Message has an empty command")
        # Accept lists from callers but keep the value immutable.
        if not isinstance(self.params, tuple):
            object.__setattr__(self, "params", tuple(self.params))

    @property
    def trailing(self) -> str | None:
        return self.params[-1] if self.params else None


@dataclass(frozen=True, slots=True)
class Prefix:
    nick: str
    user: str | None = None
    host: str | None = None

    @property
    def is_server(self) -> bool:
        return self.user is None and self.host is None and "." in self.nick


def split_prefix(prefix: str) -> Prefix:
    """Split ``nick!user@host``; a bare name is returned as ``nick``."""
    nick, _, rest = prefix.partition("!")
    user, _, host = rest.partition("@")
    if not rest:
        nick, _, host = nick.partition("@")
    return Prefix(nick=nick, user=user or None, host=host or None)


def decode(raw: bytes | str) -> ProtocolMessage:
    text = raw.decode(ENCODING, errors="replace") if isinstance(raw, bytes) else raw
    text = text.rstrip("\r\n")

    if text.startswith("@"):
        _, _, text = text.partition(" ")
        text = text.lstrip(" ")

    prefix: str | None = None
    if text.startswith(":"):
        prefix, _, text = text[1:].partition(" ")
        if not prefix:
            raise MalformedMessage("Empty prefix", data={"line": text})
        text = text.lstrip(" ")

    if text.startswith(":"):
        raise MalformedMessage("Missing command", data={"line": text})

    head, sep, trailing = text.partition(" :")
    tokens = [token for token in head.split(" ") if token]
    if not tokens:
        raise MalformedMessage("Missing command", data={"line": text})
    command, *params = tokens
    if not _COMMAND_RE.match(command):
        raise MalformedMessage("Invalid command token", data={"command": command})
    if sep:
        params.append(trailing)
    return ProtocolMessage(command=command, params=tuple(params), prefix=prefix)


def encode(message: ProtocolMessage, max_length: int = MAX_MESSAGE_LENGTH) -> bytes:
    """Serialize to wire form, CRLF included.

    Raises ``MalformedMessage`` for values the grammar cannot carry and
    ``MessageTooLong`` when the result would exceed ``max_length`` bytes.
    """
    if not _COMMAND_RE.match(message.command):
        raise MalformedMessage(
            "Invalid command token", data={"command": message.command}
        )
    parts: list[str] = []
    if message.prefix is not None:
        if not message.prefix or " " in message.prefix:
            raise MalformedMessage("Invalid prefix", data={"prefix": message.prefix})
        parts.append(f":{message.prefix}")
    parts.append(message.command)

    *middle, last = message.params or ("",)
    for param in middle:
        if not param or " " in param or param.startswith(":"):
            raise MalformedMessage(
                "Only the last parameter may be empty, contain spaces or start with ':'",
                data={"param": param},
            )
        parts.append(param)
    if message.params:
        if not last or " " in last or last.startswith(":"):
            parts.append(f":{last}")
        else:
            parts.append(last)

    line = " ".join(parts)
    if any(ch in line for ch in _FORBIDDEN):
        raise MalformedMessage("Message contains CR, LF or NUL")
    data = line.encode(ENCODING) + b"\r\n"
    if len(data) > max_length:
        raise MessageTooLong(
            f"Message is {len(data)} bytes, limit is {max_length}",
            data={"command": message.command, "length": len(data)},
        )
    return data
