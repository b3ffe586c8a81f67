"""
Configuration constants for the meager IRC client

This module contains the tunables used by the connection multiplexer.
Each constant can be overridden by setting an environment variable with the same name.
"""

import os


def _get_env_int(name: str, default: int) -> int:
    """Integer override from the environment; warns and keeps the default on bad input."""
    value = os.getenv(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            print(
                f"Warning: Invalid integer value for {name}='{value}', using default {default}"
            )
    return default


def _get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            print(
                f"Warning: Invalid float value for {name}='{value}', using default {default}"
            )
    return default


# Wire limits
MAX_LINE_LENGTH = _get_env_int(
    "MAX_LINE_LENGTH", 8192
)  # Longest inbound line accepted before the framer discards and resyncs
MAX_MESSAGE_LENGTH = _get_env_int(
    "MAX_MESSAGE_LENGTH", 512
)  # Outbound bound in bytes, CRLF included (RFC 1459)
READ_CHUNK_SIZE = _get_env_int("READ_CHUNK_SIZE", 4096)
MAX_WRITE_BUFFER = _get_env_int(
    "MAX_WRITE_BUFFER", 262144
)  # Unsent bytes tolerated before a peer that stopped reading is dropped

# Connection & registration
DEFAULT_PORT = _get_env_int("DEFAULT_PORT", 6667)
CONNECT_TIMEOUT = _get_env_float("CONNECT_TIMEOUT", 15.0)
REGISTRATION_TIMEOUT = _get_env_float(
    "REGISTRATION_TIMEOUT", 60.0
)  # Seconds from connection start until 001 must have arrived
MAX_NICK_RETRIES = _get_env_int(
    "MAX_NICK_RETRIES", 5
)  # Nick collisions tolerated during registration
NICK_SUFFIX = os.getenv("NICK_SUFFIX", "_")
MAX_CONNECTIONS = _get_env_int("MAX_CONNECTIONS", 16)

# Keepalive
IDLE_TIMEOUT = _get_env_float(
    "IDLE_TIMEOUT", 120.0
)  # Silence after which we send our own PING
PING_TIMEOUT = _get_env_float(
    "PING_TIMEOUT", 60.0
)  # Time allowed for the server to answer that PING

# Front end
SCROLLBACK_LINES = _get_env_int("SCROLLBACK_LINES", 1000)
