"""Shared IRC data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto


class RegistrationState(Enum):
    CONNECTING = auto()
    REGISTERING = auto()
    REGISTERED = auto()
    CLOSING = auto()
    CLOSED = auto()


class CloseReason(Enum):
    USER_QUIT = auto()
    SOCKET_ERROR = auto()
    TIMEOUT = auto()
    REGISTRATION_FAILED = auto()


@dataclass(slots=True)
class Channel:
    """A joined channel.

    ``_members`` maps the case-folded nick to the nick as last seen so the
    set stays duplicate free under the server's casemapping while the UI can
    still show the original spelling. Folding is done by the tracker.
    """

    name: str
    topic: str | None = None
    _members: dict[str, str] = field(default_factory=dict)

    @property
    def members(self) -> set[str]:
        return set(self._members.values())

    @property
    def folded_members(self) -> set[str]:
        return set(self._members)

    def __len__(self) -> int:
        return len(self._members)
