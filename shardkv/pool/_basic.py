from __future__ import annotations

from collections import deque
from contextlib import asynccontextmanager
from typing import Any

from anyio import Event, fail_after

from shardkv._utils import logger
from shardkv.connection import BaseConnection, TCPConnection, TCPLocation
from shardkv.exceptions import ConnectionError
from shardkv.typing import AsyncGenerator, Self


class ConnectionPool:
    """
    Bounded pool of connections to a single server.

    Connections are created lazily when a caller asks for one and none is idle.
    Once :paramref:`max_connections` connections exist (leased or idle) further
    callers are suspended until a connection is released or discarded.
    """

    def __init__(
        self,
        location: TCPLocation | None = None,
        *,
        connection_class: type[BaseConnection] = TCPConnection,
        max_connections: int | None = None,
        timeout: float | None = None,
        **connection_kwargs: Any,
    ) -> None:
        """
        :param location: The server connections are opened to
        :param connection_class: The connection class to use when creating new connections
        :param max_connections: Maximum number of connections (leased and idle) the
         pool may hold. ``None`` means unbounded.
        :param timeout: Number of seconds to wait for a connection before raising
         :exc:`TimeoutError`. ``None`` waits forever.
        :param connection_kwargs: arguments to pass to the :paramref:`connection_class`
         constructor when creating a new connection
        """
        self.location = location or TCPLocation("localhost", 6379)
        self.connection_class = connection_class
        self.connection_kwargs = connection_kwargs
        self.max_connections = max_connections
        self.timeout = timeout
        self.decode_responses = bool(connection_kwargs.get("decode_responses", False))
        self.encoding = str(connection_kwargs.get("encoding", "utf-8"))

        self._available: list[BaseConnection] = []
        self._in_use: set[BaseConnection] = set()
        self._waiters: deque[Event] = deque()
        # number of connections that exist or are being created
        self._created = 0
        # bumped on close so that suspended callers know they were abandoned
        self._generation = 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}<{self.location}>"

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def in_use(self) -> int:
        """Number of connections currently leased"""
        return len(self._in_use)

    @property
    def size(self) -> int:
        """Number of connections held by the pool (leased, idle or being created)"""
        return self._created

    async def _construct_connection(self) -> BaseConnection:
        """
        Create and connect a new connection.

        :meta private:
        """
        connection = self.connection_class(self.location, **self.connection_kwargs)
        await connection.connect()
        return connection

    def _has_capacity(self) -> bool:
        return self.max_connections is None or self._created < self.max_connections

    def _notify(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.is_set():
                waiter.set()
                return

    async def get_connection(self) -> BaseConnection:
        """
        Lease a connection. An idle connection is reused if it is still usable,
        otherwise a new one is created if the pool has capacity. If neither is
        possible the caller waits for a connection to be released.

        :raises: :exc:`TimeoutError` if :paramref:`ConnectionPool.timeout` elapsed
         before a connection became available.
        """
        generation = self._generation
        with fail_after(self.timeout):
            while True:
                if generation != self._generation:
                    raise ConnectionError("Connection pool was closed")
                while self._available:
                    connection = self._available.pop()
                    if connection.usable:
                        self._in_use.add(connection)
                        return connection
                    await self._discard(connection)
                if self._has_capacity():
                    self._created += 1
                    try:
                        connection = await self._construct_connection()
                    except BaseException:
                        # nothing was produced; hand the freed capacity to a waiter
                        if generation == self._generation:
                            self._created -= 1
                            self._notify()
                        raise
                    if generation != self._generation:
                        await connection.close()
                        raise ConnectionError("Connection pool was closed")
                    logger.debug("Created %r for %r", connection, self)
                    self._in_use.add(connection)
                    return connection
                waiter = Event()
                self._waiters.append(waiter)
                try:
                    await waiter.wait()
                except BaseException:
                    if waiter in self._waiters:
                        self._waiters.remove(waiter)
                    elif waiter.is_set():
                        # a wakeup meant for this caller must not be lost
                        self._notify()
                    raise

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[BaseConnection]:
        """
        Lease a connection for the duration of the context and release
        it afterwards.
        """
        connection = await self.get_connection()
        try:
            yield connection
        finally:
            await self.release(connection)

    async def release(self, connection: BaseConnection) -> None:
        """
        Return a leased connection. Usable connections become available for
        reuse, anything else is closed and its capacity freed.
        """
        if connection not in self._in_use:
            # leased before the pool was closed
            await connection.close()
            return
        self._in_use.discard(connection)
        if connection.usable:
            self._available.append(connection)
            self._notify()
        else:
            await self._discard(connection)

    async def _discard(self, connection: BaseConnection) -> None:
        logger.debug("Discarding %r from %r", connection, self)
        self._created -= 1
        self._notify()
        await connection.close()

    async def close(self) -> None:
        """
        Force close every connection held by the pool, including leased ones.
        Callers waiting for a connection are woken up and fail with
        :exc:`~shardkv.exceptions.ConnectionError`.
        """
        self._generation += 1
        connections = [*self._available, *self._in_use]
        self._available.clear()
        self._in_use.clear()
        self._created = 0
        while self._waiters:
            self._waiters.popleft().set()
        for connection in connections:
            await connection.close()
