"""Keepalive bookkeeping for a registered connection."""

from __future__ import annotations

import logging
from enum import Enum, auto
from itertools import count
from typing import TYPE_CHECKING

from ..constants import IDLE_TIMEOUT, PING_TIMEOUT
from ..logs.logger import logger

if TYPE_CHECKING:  # pragma: no cover
    from .connection import Connection


class HeartbeatAction(Enum):
    NONE = auto()
    PROBE = auto()
    TIMEOUT = auto()


class ConnectionHeartbeat:
    """Tracks silence on a connection and decides when to probe or give up.

    Any received data counts as proof of life and cancels an outstanding
    probe, so a server that answers our PING with anything at all is fine.
    """

    _tokens = count(1)

    def __init__(
        self,
        client: Connection,
        idle_timeout: float = IDLE_TIMEOUT,
        ping_timeout: float = PING_TIMEOUT,
    ):
        self.client = client
        self.idle_timeout = idle_timeout
        self.ping_timeout = ping_timeout
        self.last_activity = 0.0
        self.probe_token: str | None = None
        self.probe_sent_at: float | None = None

    def touch(self, now: float) -> None:
        self.last_activity = now
        if self.probe_token is not None:
            logger.log_event(
                "keepalive",
                "probe_answered",
                level=logging.DEBUG,
                connection=self.client.id,
                rtt=round(now - (self.probe_sent_at or now), 3),
            )
        self.probe_token = None
        self.probe_sent_at = None

    def deadline(self) -> float:
        if self.probe_sent_at is not None:
            return self.probe_sent_at + self.ping_timeout
        return self.last_activity + self.idle_timeout

    def check(self, now: float) -> HeartbeatAction:
        if now < self.deadline():
            return HeartbeatAction.NONE
        if self.probe_sent_at is not None:
            logger.log_event(
                "keepalive",
                "ping_timeout",
                level=logging.WARNING,
                connection=self.client.id,
                waited=round(now - self.probe_sent_at, 3),
            )
            return HeartbeatAction.TIMEOUT
        return HeartbeatAction.PROBE

    def start_probe(self, now: float) -> str:
        self.probe_token = f"meager-{next(self._tokens)}"
        self.probe_sent_at = now
        logger.log_event(
            "keepalive",
            "probe_sent",
            level=logging.DEBUG,
            connection=self.client.id,
            idle=round(now - self.last_activity, 3),
            token=self.probe_token,
        )
        return self.probe_token
