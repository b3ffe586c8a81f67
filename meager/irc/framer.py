"""Splits a byte stream into protocol lines."""

from __future__ import annotations

from collections.abc import Iterator

from ..constants import MAX_LINE_LENGTH
from ..errors.internal import FramingError


class LineFramer:
    """Buffers received bytes and hands out complete lines.

    Lines are delimited by LF; a CR directly before the LF is stripped so
    both CRLF and bare LF peers work. Empty lines are skipped.

    ``feed`` appends data and returns a generator over the lines that are
    now complete. When a line grows past ``max_line_length`` the generator
    raises ``FramingError`` after discarding the fragment; bytes up to the
    next delimiter are dropped too. Call ``feed(b"")`` to resume.
    """

    def __init__(self, max_line_length: int = MAX_LINE_LENGTH) -> None:
        self.max_line_length = max_line_length
        self._buffer = bytearray()
        self._discarding = False

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, data: bytes) -> Iterator[bytes]:
        self._buffer.extend(data)
        return self._lines()

    def _lines(self) -> Iterator[bytes]:
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                self._check_partial()
                return
            line = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            if self._discarding:
                # tail of an oversized line already reported
                self._discarding = False
                continue
            if line.endswith(b"\r"):
                line = line[:-1]
            if len(line) > self.max_line_length:
                raise FramingError(
                    "Inbound line exceeds maximum length",
                    data={"length": len(line), "limit": self.max_line_length},
                )
            if line:
                yield line

    def _check_partial(self) -> None:
        # one spare byte for the CR of a line that is still waiting for LF
        if len(self._buffer) <= self.max_line_length + 1:
            return
        size = len(self._buffer)
        self._buffer.clear()
        if self._discarding:
            return
        self._discarding = True
        raise FramingError(
            "Inbound line exceeds maximum length",
            data={"length": size, "limit": self.max_line_length},
        )

    def flush(self) -> bytes | None:
        """Return and clear whatever partial line is left over."""
        leftover = bytes(self._buffer)
        self._buffer.clear()
        discarding, self._discarding = self._discarding, False
        if discarding or not leftover:
            return None
        return leftover.rstrip(b"\r")
