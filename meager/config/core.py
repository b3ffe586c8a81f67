"""Environment configuration loading."""

from __future__ import annotations

import os
from collections.abc import Mapping

from .model import ClientConfig

ENV_FIELDS = {
    "IRC_NICK": "nick",
    "IRC_USER": "user",
    "IRC_REAL": "real",
    "IRC_PORT": "port",
    "IRC_QUIT_MESSAGE": "quit_message",
    "IRC_LOG_FILE": "log_file",
}


def load_config(environ: Mapping[str, str] | None = None) -> ClientConfig:
    """Build a ClientConfig from environment variables over the defaults.

    Args:
        environ: Mapping to read from, ``os.environ`` when omitted.

    Returns:
        The validated configuration.

    Raises:
        pydantic.ValidationError: If a provided value is invalid.
    """
    env = os.environ if environ is None else environ
    values = {field: env[name] for name, field in ENV_FIELDS.items() if name in env}
    return ClientConfig.model_validate(values)


def print_config_summary(config: ClientConfig) -> None:
    print(f"nick: {config.nick}  user: {config.user}  real name: {config.real}")
    print(f"default port: {config.port}  log file: {config.log_file or '-'}")
