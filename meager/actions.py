"""User actions accepted by the tab router."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Connect:
    address: str


@dataclass(frozen=True, slots=True)
class Join:
    channel: str


@dataclass(frozen=True, slots=True)
class Part:
    channel: str | None = None  # None: the active channel tab


@dataclass(frozen=True, slots=True)
class SendText:
    text: str


@dataclass(frozen=True, slots=True)
class Quit:
    message: str = ""


@dataclass(frozen=True, slots=True)
class SwitchTab:
    direction: int = 1


UserAction = Connect | Join | Part | SendText | Quit | SwitchTab
