"""Application wiring: configuration, logging, terminal and event loop."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Sequence

from blessed import Terminal
from pydantic import ValidationError

from .config import ClientConfig, load_config, print_config_summary
from .errors.handling import log_error
from .logs.logger import logger
from .multiplexer import Multiplexer
from .ui.terminal import KeyboardInput, TerminalView


async def run_client(config: ClientConfig, term: Terminal | None = None) -> None:
    """Run the interactive client until the user leaves with Esc."""
    term = term or Terminal()
    multiplexer = Multiplexer(config)
    view = TerminalView(multiplexer.router, term)
    keyboard = KeyboardInput(term, view)
    multiplexer.input_source = keyboard
    with term.fullscreen(), term.cbreak():
        view.draw()
        try:
            await multiplexer.run(view.render)
        finally:
            keyboard.close()


def health_check() -> int:
    logger.log_event("app", "health_check")
    try:
        config = load_config()
    except ValidationError as e:
        logger.log_event("app", "health_failed", level=logging.ERROR, error=str(e))
        return 1
    print_config_summary(config)
    logger.log_event("app", "health_ok")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "--health-check":
        return health_check()

    try:
        config = load_config()
    except ValidationError as e:
        logger.log_event("app", "config_invalid", level=logging.ERROR, error=str(e))
        return 1

    # The terminal owns the screen from here on.
    logger.configure(log_file=config.log_file, console=False)
    logger.log_event("app", "start", nick=config.nick)
    try:
        asyncio.run(run_client(config))
    except KeyboardInterrupt:
        logger.log_event("app", "interrupted", level=logging.WARNING)
    except Exception as e:  # noqa: BLE001
        log_error("Main application error", e, level=logging.CRITICAL)
        return 1
    finally:
        logger.log_event("app", "shutdown_complete")
    return 0


def run() -> None:
    sys.exit(main())
