"""Front end: command parsing and the blessed terminal view."""

from .commands import parse_input  # noqa: F401

__all__ = ["parse_input"]
