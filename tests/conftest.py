from __future__ import annotations

import asyncio
import os

import pytest
import pytest_asyncio

from meager.config.model import ClientConfig

# Keep the structured logger in its plain (non-debug) format unless a test asks.
os.environ.pop("DEBUG", None)


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWriter:
    """Collects written bytes instead of putting them on a socket."""

    def __init__(self) -> None:
        self.data = bytearray()
        self.closed = False
        self.fail_with: OSError | None = None
        self.unsent = 0
        self.stalled = False

    @property
    def transport(self) -> FakeWriter:
        return self

    def get_write_buffer_size(self) -> int:
        return self.unsent

    def stall(self, unsent: int = 10**6) -> None:
        """Behave like a peer that stopped reading."""
        self.stalled = True
        self.unsent = unsent

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.data.extend(data)
        if self.stalled:
            self.unsent += len(data)

    async def drain(self) -> None:
        if self.stalled:
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        await asyncio.sleep(0)

    @property
    def lines(self) -> list[str]:
        return [line for line in self.data.decode().split("\r\n") if line]

    def clear(self) -> None:
        self.data.clear()


class FakeServer:
    """Stands in for ``asyncio.open_connection``; one stream pair per address."""

    def __init__(self) -> None:
        self.streams: dict[tuple[str, int], tuple[asyncio.StreamReader, FakeWriter]] = {}
        self.opened: list[tuple[str, int]] = []

    async def open(self, host: str, port: int) -> tuple[asyncio.StreamReader, FakeWriter]:
        self.opened.append((host, port))
        pair = self.streams.setdefault((host, port), (asyncio.StreamReader(), FakeWriter()))
        await asyncio.sleep(0)
        return pair

    def reader(self, host: str, port: int = 6667) -> asyncio.StreamReader:
        return self.streams[(host, port)][0]

    def writer(self, host: str, port: int = 6667) -> FakeWriter:
        return self.streams[(host, port)][1]

    def feed(self, host: str, *lines: str, port: int = 6667) -> None:
        self.reader(host, port).feed_data("".join(f"{line}\r\n" for line in lines).encode())


class ScriptedInput:
    """Input source fed from the test; blocks until something is pushed."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    def push(self, action) -> None:  # type: ignore[no-untyped-def]
        self.queue.put_nowait(action)

    async def next_action(self):  # type: ignore[no-untyped-def]
        return await self.queue.get()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(nick="bob", user="bobby", real="Bob Example")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def writer() -> FakeWriter:
    return FakeWriter()


@pytest_asyncio.fixture
async def server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def inputs() -> ScriptedInput:
    return ScriptedInput()
