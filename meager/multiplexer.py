"""The event loop: every connection socket, the input source and all timers.

One coroutine drives everything. Each ``poll_once`` call waits for the
first of: a connect finishing, bytes arriving on a connection, a user
action, or the nearest registration/keepalive deadline. It then runs the
synchronous decode and state-machine work, flushes queued output and
returns the events produced in that iteration.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from .actions import UserAction
from .config.model import ClientConfig
from .constants import CONNECT_TIMEOUT, MAX_CONNECTIONS, READ_CHUNK_SIZE
from .errors.handling import log_error
from .errors.internal import (
    ClientError,
    CommandError,
    ConnectionFailure,
    ConnectionLimitReached,
    ConnectionTimeout,
    DuplicateConnection,
)
from .events import ActionFailed, UIEvent
from .irc.connection import Connection
from .irc.models import CloseReason, RegistrationState
from .logs.logger import logger
from .tabs import TabRouter

OpenConnection = Callable[
    [str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]
]


class InputSource(Protocol):
    async def next_action(self) -> UserAction | None:
        """Next user action, or None once input has ended."""
        ...


class Multiplexer:  # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        config: ClientConfig,
        input_source: InputSource | None = None,
        *,
        open_connection: OpenConnection | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_connections: int = MAX_CONNECTIONS,
        connect_timeout: float = CONNECT_TIMEOUT,
        read_chunk_size: int = READ_CHUNK_SIZE,
    ):
        self.config = config
        self.input_source = input_source
        self.connections: dict[str, Connection] = {}
        self.router = TabRouter(self)
        self.max_connections = max_connections
        self.connect_timeout = connect_timeout
        self.read_chunk_size = read_chunk_size
        self.running = True
        self._open = open_connection or asyncio.open_connection
        self._clock = clock
        self._connect_tasks: dict[str, asyncio.Task] = {}
        self._read_tasks: dict[str, asyncio.Task] = {}
        self._input_task: asyncio.Task | None = None
        self._events: list[UIEvent] = []
        self._shutting_down = False

    # -- registry used by the tab router ---------------------------------
    def get_connection(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def connect(self, address: str) -> Connection:
        if self._shutting_down:
            raise CommandError("Client is shutting down")
        if len(self.connections) >= self.max_connections:
            raise ConnectionLimitReached(
                f"Connection limit of {self.max_connections} reached",
                data={"limit": self.max_connections},
            )
        connection = Connection(address, self.config, clock=self._clock)
        if connection.id in self.connections:
            raise DuplicateConnection(
                f"Already connected to {connection.id}", data={"connection": connection.id}
            )
        self.connections[connection.id] = connection
        self._connect_tasks[connection.id] = asyncio.create_task(
            self._open_transport(connection)
        )
        logger.log_event(
            "mux", "connect_start", connection=connection.id, host=connection.host, port=connection.port
        )
        return connection

    async def _open_transport(
        self, connection: Connection
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(
            self._open(connection.host, connection.port), timeout=self.connect_timeout
        )

    @property
    def poll_set(self) -> set[str]:
        """Connections whose sockets are watched for incoming data."""
        return {
            connection_id
            for connection_id, connection in self.connections.items()
            if connection.reader is not None and connection.is_open
        }

    # -- loop --------------------------------------------------------------
    async def poll_once(self) -> list[UIEvent]:
        self._reap()
        waiters = self._arm()
        timeout = self._timeout()
        done: set[asyncio.Task] = set()
        if waiters:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        elif timeout is not None:
            await asyncio.sleep(timeout)

        self._finish_connects(done)
        self._finish_reads(done)
        self._finish_input(done)

        for connection in list(self.connections.values()):
            connection.check_timers()
        for connection in list(self.connections.values()):
            connection.flush()

        events = self._collect()
        self.router.apply(events)
        if self._shutting_down and not self.connections:
            self.running = False
        return events

    async def stream(self) -> AsyncIterator[list[UIEvent]]:
        """Yield each iteration's events until input ends and all connections closed."""
        try:
            while self.running and (self.input_source is not None or self.connections):
                yield await self.poll_once()
            leftover = self.close()
            if leftover:
                yield leftover
        finally:
            # events of an abandoned stream have no consumer and are dropped
            self.close()

    async def run(self, render: Callable[[list[UIEvent]], None]) -> None:
        async for events in self.stream():
            render(events)

    def shutdown(self) -> None:
        """Quit every connection; the loop stops once they are all closed."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.log_event("mux", "shutdown", connections=len(self.connections))
        for connection in list(self.connections.values()):
            connection.quit(self.config.quit_message)

    def close(self) -> list[UIEvent]:
        """Quit and release every connection; return the events this produced."""
        self.running = False
        if self._input_task is not None:
            self._input_task.cancel()
            self._input_task = None
        for connection in list(self.connections.values()):
            if connection.state is not RegistrationState.CLOSED:
                connection.quit(self.config.quit_message)
        self._reap()
        events = self._collect()
        self.router.apply(events)
        return events

    # -- iteration steps ---------------------------------------------------
    def _arm(self) -> set[asyncio.Task]:
        for connection_id, connection in self.connections.items():
            if (
                connection.reader is not None
                and connection.is_open
                and connection_id not in self._read_tasks
            ):
                self._read_tasks[connection_id] = asyncio.create_task(
                    connection.reader.read(self.read_chunk_size)
                )
        if (
            self.input_source is not None
            and self._input_task is None
            and not self._shutting_down
        ):
            self._input_task = asyncio.create_task(self.input_source.next_action())
        waiters = {*self._connect_tasks.values(), *self._read_tasks.values()}
        if self._input_task is not None:
            waiters.add(self._input_task)
        return waiters

    def _timeout(self) -> float | None:
        deadlines = [
            deadline
            for connection in self.connections.values()
            if (deadline := connection.next_deadline()) is not None
        ]
        if not deadlines:
            return None
        return max(0.0, min(deadlines) - self._clock())

    def _finish_connects(self, done: set[asyncio.Task]) -> None:
        for connection_id, task in list(self._connect_tasks.items()):
            if task not in done:
                continue
            del self._connect_tasks[connection_id]
            connection = self.connections[connection_id]
            try:
                reader, writer = task.result()
            except TimeoutError:
                log_error(
                    "Connect failed",
                    ConnectionTimeout(
                        f"no answer within {self.connect_timeout}s",
                        data={"connection": connection_id},
                    ),
                    level=logging.WARNING,
                )
                connection.fail(CloseReason.TIMEOUT, "connect timed out")
                continue
            except (OSError, ValueError) as e:
                # ValueError covers unencodable host names (IDNA)
                log_error(
                    "Connect failed",
                    ConnectionFailure(str(e), data={"connection": connection_id}),
                    level=logging.WARNING,
                )
                connection.fail(CloseReason.SOCKET_ERROR, f"connect failed: {e}")
                continue
            connection.attach(reader, writer)
            logger.log_event("mux", "connected", connection=connection_id)

    def _finish_reads(self, done: set[asyncio.Task]) -> None:
        for connection_id, task in list(self._read_tasks.items()):
            if task not in done:
                continue
            del self._read_tasks[connection_id]
            self._deliver(self.connections[connection_id], task)

    @staticmethod
    def _deliver(connection: Connection, task: asyncio.Task) -> None:
        try:
            data = task.result()
        except OSError as e:
            connection.connection_lost(f"read failed: {e}")
            return
        if not data:
            connection.connection_lost("connection closed by server")
            return
        connection.receive(data)

    def _finish_input(self, done: set[asyncio.Task]) -> None:
        task = self._input_task
        if task is None or task not in done:
            return
        self._input_task = None
        action = task.result()
        if action is None:
            self.shutdown()
            return
        self._dispatch(action)

    def _dispatch(self, action: UserAction) -> None:
        try:
            self.router.dispatch(action)
        except ClientError as e:
            active = self.router.active_tab
            if isinstance(e, ConnectionLimitReached):
                connection_id = None
            else:
                connection_id = e.data.get("connection") or (active.connection if active else None)
            log_error(
                f"{type(action).__name__} rejected",
                e,
                level=logging.ERROR if isinstance(e, ConnectionLimitReached) else logging.WARNING,
            )
            self._events.append(
                ActionFailed(
                    connection=connection_id if isinstance(connection_id, str) else None,
                    detail=str(e),
                )
            )

    def _reap(self) -> None:
        """Remove connections that reached CLOSING at an iteration boundary."""
        for connection_id, connection in list(self.connections.items()):
            if connection.state not in (RegistrationState.CLOSING, RegistrationState.CLOSED):
                continue
            connect_task = self._connect_tasks.pop(connection_id, None)
            if connect_task is not None:
                connect_task.cancel()
                if connect_task.done() and not connect_task.cancelled() and connect_task.exception() is None:
                    _, writer = connect_task.result()
                    writer.close()
            read_task = self._read_tasks.pop(connection_id, None)
            if read_task is not None:
                if read_task.done() and not read_task.cancelled():
                    # bytes already read still go through the decoder
                    self._deliver(connection, read_task)
                else:
                    read_task.cancel()
            connection.teardown()
            del self.connections[connection_id]
            self._events.extend(connection.drain_events())
            logger.log_event(
                "mux", "connection_removed", level=logging.DEBUG, connection=connection_id
            )

    def _collect(self) -> list[UIEvent]:
        events, self._events = self._events, []
        for connection in self.connections.values():
            events.extend(connection.drain_events())
        return events
