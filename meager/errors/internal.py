"""Centralized client error hierarchy.

These exceptions provide semantic categories for the connection multiplexer.
Errors local to one connection are converted into UI events by the connection
that raised them; only resource exhaustion is reported above the loop.

Classes:
  ClientError            – Base for all client errors.
  FramingError           – Oversized inbound line (framer resyncs).
  MalformedMessage       – Unparseable protocol line or invalid message.
  NotRegistered          – Channel-scoped command issued before 001.
  MessageTooLong         – Encoded message would exceed the wire limit.
  ConnectionFailure      – Transport error on a socket.
  ConnectionTimeout      – Connect, registration or keepalive deadline missed.
  RegistrationFailed     – Server refused registration.
  NickInUse              – Nick retries exhausted during registration.
  StaleTab               – Tab refers to a connection or channel that is gone.
  NoActiveTab            – Action needs a tab but none is open.
  CommandError           – Slash command could not be parsed.
  ConnectionLimitReached – No free connection slot.
  DuplicateConnection    – Address is already connected.
"""

from __future__ import annotations

from collections.abc import Mapping


class ClientError(Exception):
    """Base class for all client errors with metadata support.

    Attributes:
        data: Dictionary containing arbitrary structured context data.

    Args:
        message: Descriptive error message.
        data: Optional mapping of additional context data.
    """

    data: dict[str, object]

    def __init__(
        self, message: str, *, data: Mapping[str, object] | None = None
    ) -> None:
        super().__init__(message)
        # Copy into a plain dict to avoid unexpected mutations from caller.
        self.data = dict(data) if data else {}


class FramingError(ClientError):
    """An inbound line exceeded the configured maximum length.

    The framer has already discarded the fragment and will resynchronize
    at the next delimiter; the connection survives.
    """


class MalformedMessage(ClientError):
    """A line could not be decoded, or a message cannot be put on the wire."""


class NotRegistered(ClientError):
    """A channel-scoped command was issued before registration completed."""


class MessageTooLong(ClientError):
    """An encoded message would exceed the wire length limit."""


class ConnectionFailure(ClientError):
    """Transport level failure (refused, reset, closed by peer)."""


class ConnectionTimeout(ClientError):
    """A connect, registration or keepalive deadline expired."""


class RegistrationFailed(ClientError):
    """Registration was refused or could not be sent."""


class NickInUse(RegistrationFailed):
    """Every nick tried during registration was already taken."""


class StaleTab(ClientError):
    """A tab referenced a connection or channel that no longer exists."""


class NoActiveTab(ClientError):
    """The action requires an active tab but none is open."""


class CommandError(ClientError):
    """User input could not be turned into an action."""


class ConnectionLimitReached(ClientError):
    """No connection slot is left."""


class DuplicateConnection(ClientError):
    """A connection to the same address already exists."""


__all__ = [
    "ClientError",
    "FramingError",
    "MalformedMessage",
    "NotRegistered",
    "MessageTooLong",
    "ConnectionFailure",
    "ConnectionTimeout",
    "NickInUse",
    "RegistrationFailed",
    "StaleTab",
    "NoActiveTab",
    "CommandError",
    "ConnectionLimitReached",
    "DuplicateConnection",
]
