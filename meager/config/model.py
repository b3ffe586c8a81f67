from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..constants import DEFAULT_PORT


class ClientConfig(BaseModel):
    """Registration parameters and client preferences.

    Attributes:
        nick: Nickname requested at registration.
        user: Username sent in the USER command.
        real: Real name sent in the USER command.
        port: Port used when a connect address does not name one.
        quit_message: Message sent with QUIT on shutdown or a bare /quit.
        log_file: Where to write logs while the terminal UI is running.
    """

    model_config = ConfigDict(frozen=True)

    nick: str = Field(default="meager-irc-client", min_length=1, max_length=64)
    user: str = Field(default="guest", min_length=1, max_length=64)
    real: str = Field(default="Meager", min_length=1, max_length=255)
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    quit_message: str = Field(default="Leaving", max_length=255)
    log_file: str | None = None

    @field_validator("nick", "user", mode="before")
    @classmethod
    def validate_token(cls, v: Any) -> Any:
        """Nick and user go on the wire as middle parameters."""
        if isinstance(v, str):
            v = v.strip()
            if any(ch.isspace() for ch in v) or v.startswith(":"):
                raise ValueError("must not contain whitespace or start with ':'")
        return v

    @field_validator("real", "quit_message", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Any:
        if isinstance(v, str) and any(ch in v for ch in "\r\n\0"):
            raise ValueError("must not contain line breaks")
        return v

    @field_validator("log_file", mode="before")
    @classmethod
    def empty_log_file_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v
