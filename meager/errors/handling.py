from __future__ import annotations

import logging

from ..logs.logger import logger
from .internal import (
    ClientError,
    CommandError,
    ConnectionFailure,
    ConnectionLimitReached,
    ConnectionTimeout,
    DuplicateConnection,
    FramingError,
    MalformedMessage,
    MessageTooLong,
    NickInUse,
    NoActiveTab,
    NotRegistered,
    RegistrationFailed,
    StaleTab,
)


def classify_error(error: Exception) -> str:
    """Map an exception onto a coarse category used in log output."""
    if isinstance(error, ConnectionFailure | ConnectionTimeout | OSError):
        return "network"
    if isinstance(error, FramingError | MalformedMessage):
        return "protocol"
    if isinstance(
        error,
        NotRegistered
        | MessageTooLong
        | CommandError
        | NoActiveTab
        | StaleTab
        | DuplicateConnection,
    ):
        return "usage"
    if isinstance(error, NickInUse | RegistrationFailed):
        return "registration"
    if isinstance(error, ConnectionLimitReached):
        return "resource"
    if isinstance(error, ClientError):
        return "internal"
    return "unknown"


def log_error(
    message: str,
    error: Exception,
    context: dict[str, object] | None = None,
    *,
    level: int = logging.ERROR,
) -> None:
    """Logs an error message with the associated exception details.

    Args:
        message: A descriptive message about the error context.
        error: The exception instance to be logged.
        context: Optional additional context data for debugging. The
            reserved keys ``connection`` and ``channel`` end up in the
            log line prefix.
        level: Logging level, ERROR unless the caller knows better.
    """
    fields: dict[str, object] = dict(context or {})
    if isinstance(error, ClientError):
        for key, value in error.data.items():
            fields.setdefault(key, value)
    logger.log_event(
        "error",
        classify_error(error),
        level=level,
        human=f"{message}: {error}",
        error_type=type(error).__name__,
        **fields,
    )
