"""Structured event logger for the client."""

from __future__ import annotations

import logging
import os
import sys
from typing import TextIO


def _supports_color(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):  # pragma: no cover
        return False


class SimpleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[35m",
    }
    RESET = "\x1b[0m"

    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self.enable_color = _supports_color(stream or sys.stderr)

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 (simple override)
        msg = record.getMessage()
        # Longest built-in level name: 'CRITICAL' (8 chars).
        raw_level = record.levelname.ljust(8)
        if self.enable_color:
            color = self.LEVEL_COLORS.get(record.levelno, "")
            return f"{color}{raw_level}{self.RESET} {msg}"
        return f"{raw_level} {msg}"


class ClientLogger:
    def __init__(self, name: str = "meager", log_file: str | None = None) -> None:
        self._event_name_width = 32
        self.logger = logging.getLogger(name)
        self.log_file = log_file
        self.logger.setLevel(logging.DEBUG if self._is_debug_enabled() else logging.INFO)
        self.configure(log_file=log_file, console=True)

    def configure(self, log_file: str | None = None, *, console: bool = True) -> None:
        """Replace the handlers.

        The terminal front end owns stdout/stderr while it runs, so it calls
        this with ``console=False`` and, optionally, a file to log into.
        """
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.log_file = log_file
        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(SimpleFormatter(sys.stderr))
            self.logger.addHandler(console_handler)
        if log_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )
            )
            self.logger.addHandler(file_handler)
        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def log_event(
        self,
        domain: str,
        action: str,
        level: int = logging.INFO,
        human: str | None = None,
        *,
        exc_info: bool = False,
        **kwargs: object,
    ) -> None:
        event_name = f"{domain}_{action}".lower()
        human_text = human
        derived = False
        if human_text is None:
            # Local import to avoid cyclic import issues during module init.
            from .event_catalog import EVENT_TEMPLATES as _event_templates

            template = _event_templates.get((domain, action))
            if template:
                try:
                    human_text = template.format(**kwargs)
                except (KeyError, IndexError, ValueError):
                    human_text = template
            else:
                human_text = f"{domain.replace('_', ' ')}: {action.replace('_', ' ')}"
                derived = True
        kwargs.setdefault("_human_text", human_text)
        if derived:
            kwargs.setdefault("derived", True)
        self._log(level, event_name, exc_info=exc_info, **kwargs)

    def _log(
        self, level: int, event_name: str, exc_info: bool = False, **kwargs: object
    ) -> None:
        kw: dict[str, object] = dict(kwargs)  # copy for mutation in extract
        connection, channel, human_text = self._extract_reserved(kw)
        prefix = self._build_prefix(connection, channel)
        if self._is_debug_enabled():
            msg = self._build_debug_message(event_name, prefix, human_text, kw)
        else:
            msg = f"{prefix} {human_text or event_name}"
        self.logger.log(level, msg, exc_info=exc_info)

    @staticmethod
    def _is_debug_enabled() -> bool:
        return os.environ.get("DEBUG", "false").lower() in ("true", "1", "yes")

    @staticmethod
    def _extract_reserved(
        kwargs: dict[str, object],
    ) -> tuple[str | None, str | None, str | None]:
        connection_o = kwargs.pop("connection", None)
        channel_o = kwargs.pop("channel", None)
        human_text_o = kwargs.pop("_human_text", None)
        connection = connection_o if isinstance(connection_o, str) else None
        channel = channel_o if isinstance(channel_o, str) else None
        human_text = human_text_o if isinstance(human_text_o, str) else None
        return connection, channel, human_text

    @staticmethod
    def _build_prefix(connection: str | None, channel: str | None) -> str:
        label = connection or "system"
        core = f"{label}{channel}" if channel else label
        padded = core.ljust(24)[:24]
        return f"[{padded}]"

    def _build_debug_message(
        self,
        event_name: str,
        prefix: str,
        human_text: str | None,
        kwargs: dict[str, object],
    ) -> str:
        context = ", ".join(f"{k}={v}" for k, v in kwargs.items())
        width = self._event_name_width
        if len(event_name) <= width:
            ev = event_name.ljust(width)
        else:
            ev = event_name[: width - 1] + "~"
        base = f"{ev} {prefix}"
        if human_text:
            base = f"{base} {human_text}"
        if context:
            base = f"{base} ({context})"
        return base


logger = ClientLogger()
