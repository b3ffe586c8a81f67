"""Channel membership tracking.

All nick and channel comparisons for a connection go through
``MembershipTracker.fold`` so that the server's casemapping is applied in
one place.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from ..logs.logger import logger
from .models import Channel

_UPPER = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_LOWER = "abcdefghijklmnopqrstuvwxyz"

CASEMAPPINGS: dict[str, dict[int, int]] = {
    "ascii": str.maketrans(_UPPER, _LOWER),
    "rfc1459": str.maketrans(_UPPER + "[]\\~", _LOWER + "{}|^"),
    "strict-rfc1459": str.maketrans(_UPPER + "[]\\", _LOWER + "{}|"),
}
DEFAULT_CASEMAPPING = "ascii"

# Membership prefixes a server may put in front of nicks in RPL_NAMREPLY.
NICK_STATUS_PREFIXES = "~&@%+"


class MembershipTracker:
    def __init__(self, connection: str = "", casemapping: str = DEFAULT_CASEMAPPING):
        self.connection = connection
        self.casemapping = DEFAULT_CASEMAPPING
        self._table = CASEMAPPINGS[DEFAULT_CASEMAPPING]
        self._channels: dict[str, Channel] = {}
        self.set_casemapping(casemapping)

    # -- casemapping -----------------------------------------------------
    def fold(self, name: str) -> str:
        return name.translate(self._table)

    def same(self, a: str, b: str) -> bool:
        return self.fold(a) == self.fold(b)

    def set_casemapping(self, name: str) -> None:
        mapping = name.lower()
        if mapping not in CASEMAPPINGS:
            logger.log_event(
                "membership",
                "unknown_casemapping",
                level=logging.WARNING,
                connection=self.connection,
                casemapping=name,
            )
            mapping = DEFAULT_CASEMAPPING
        if mapping == self.casemapping:
            return
        self.casemapping = mapping
        self._table = CASEMAPPINGS[mapping]
        # Re-key under the new folding; later entries win on collision.
        channels, self._channels = self._channels, {}
        for channel in channels.values():
            members = dict(channel._members)  # noqa: SLF001
            channel._members.clear()  # noqa: SLF001
            for nick in members.values():
                channel._members[self.fold(nick)] = nick  # noqa: SLF001
            self._channels[self.fold(channel.name)] = channel

    # -- lookup ----------------------------------------------------------
    def get(self, name: str) -> Channel | None:
        return self._channels.get(self.fold(name))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.fold(name) in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(list(self._channels.values()))

    def __len__(self) -> int:
        return len(self._channels)

    # -- updates ---------------------------------------------------------
    def joined(self, channel: str, nick: str, *, is_self: bool) -> Channel | None:
        """Record a JOIN. Our own join creates the channel entry."""
        key = self.fold(channel)
        entry = self._channels.get(key)
        if entry is None:
            if not is_self:
                logger.log_event(
                    "membership",
                    "join_unknown_channel",
                    level=logging.DEBUG,
                    connection=self.connection,
                    channel=channel,
                    nick=nick,
                )
                return None
            entry = self._channels[key] = Channel(name=channel)
        self._add(entry, nick)
        return entry

    def parted(self, channel: str, nick: str, *, is_self: bool) -> Channel | None:
        """Record a PART (or KICK). Our own part destroys the channel entry."""
        key = self.fold(channel)
        entry = self._channels.get(key)
        if entry is None:
            return None
        if is_self:
            del self._channels[key]
        else:
            entry._members.pop(self.fold(nick), None)  # noqa: SLF001
        return entry

    def quit(self, nick: str) -> list[Channel]:
        folded = self.fold(nick)
        affected = []
        for entry in self._channels.values():
            if entry._members.pop(folded, None) is not None:  # noqa: SLF001
                affected.append(entry)
        return affected

    def renamed(self, old: str, new: str) -> list[Channel]:
        folded_old = self.fold(old)
        affected = []
        for entry in self._channels.values():
            if entry._members.pop(folded_old, None) is not None:  # noqa: SLF001
                self._add(entry, new)
                affected.append(entry)
        return affected

    def names(self, channel: str, nicks: Iterable[str]) -> Channel | None:
        entry = self.get(channel)
        if entry is None:
            return None
        for nick in nicks:
            nick = nick.lstrip(NICK_STATUS_PREFIXES)
            if nick:
                self._add(entry, nick)
        return entry

    def set_topic(self, channel: str, topic: str | None) -> Channel | None:
        entry = self.get(channel)
        if entry is not None:
            entry.topic = topic or None
        return entry

    def clear(self) -> list[Channel]:
        channels = list(self._channels.values())
        self._channels.clear()
        return channels

    def _add(self, entry: Channel, nick: str) -> None:
        entry._members[self.fold(nick)] = nick  # noqa: SLF001
