from __future__ import annotations

from typing import Any

from shardkv.connection import BaseConnection
from shardkv.exceptions import PipelineError, ProtocolError, RedisError, WatchError
from shardkv.pool import ConnectionPool
from shardkv.typing import NullArray, ResponseType, Self, ValueT


class Pipeline:
    """
    Sends commands over one leased connection without waiting for their replies.

    Every :meth:`call` only buffers the request and counts an outstanding reply.
    Replies are read back in the order the commands were issued with
    :meth:`read_response`, :meth:`flush` or :meth:`collect`. Error replies are
    returned as exception instances so that one failing command does not
    prevent reading the replies of the others.

    Example::

        async with client.pipeline() as pipe:
            pipe.call("SET", "k", "v")
            pipe.call("GET", "k")
            assert await pipe.collect() == [b"OK", b"v"]
    """

    def __init__(self, connection_pool: ConnectionPool, *, decode: bool | None = None) -> None:
        """
        :param connection_pool: The pool to lease the connection from
        :param decode: Overrides the pool's ``decode_responses`` setting for replies
         read through this context
        """
        self.connection_pool = connection_pool
        self.decode = decode
        self.count = 0
        self._connection: BaseConnection | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}<{self.connection_pool!r}, outstanding={self.count}>"

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def connection(self) -> BaseConnection:
        if self._connection is None:
            raise RuntimeError(f"{type(self).__name__} is not open")
        return self._connection

    async def open(self) -> None:
        """Lease the connection this context will use"""
        if self._connection is None:
            self._connection = await self.connection_pool.get_connection()

    def call(self, command: ValueT, *args: ValueT) -> None:
        """
        Queue a command. Nothing is sent until a reply is read.
        """
        self._queue(command, *args)

    def _queue(self, command: ValueT, *args: ValueT) -> None:
        self.connection.write_command(command, *args)
        self.count += 1

    async def read_response(self) -> ResponseType:
        """
        Send any buffered commands and read the next outstanding reply.

        :raises: :exc:`~shardkv.exceptions.PipelineError` if no reply is outstanding
        """
        if self.count == 0:
            raise PipelineError("No outstanding replies to read")
        await self.connection.flush()
        response = await self.connection.read_response(self.decode)
        self.count -= 1
        return response

    async def flush(self, count: int = 0) -> None:
        """
        Read and discard replies until only :paramref:`count` remain outstanding
        """
        while self.count > count:
            await self.read_response()

    async def collect(self) -> list[ResponseType]:
        """
        Read every outstanding reply in the order the commands were queued
        """
        responses: list[ResponseType] = []
        while self.count > 0:
            responses.append(await self.read_response())
        return responses

    async def sync_call(self, command: ValueT, *args: ValueT) -> ResponseType:
        """
        Queue a command, discard the replies of everything queued before it
        and return its reply.

        :raises: The error reply if the command failed.
        """
        self._queue(command, *args)
        await self.flush(1)
        response = await self.read_response()
        if isinstance(response, RedisError):
            raise response
        return response

    async def close(self) -> None:
        """
        Drain outstanding replies so the connection is in sync for its next
        user and return it to the pool. A connection that failed is not
        drained; the pool discards it.
        """
        if self._connection is None:
            return
        try:
            if self.count and self._connection.usable:
                await self.flush()
        finally:
            connection, self._connection = self._connection, None
            self.count = 0
            await self.connection_pool.release(connection)


class Transaction(Pipeline):
    """
    A :class:`Pipeline` whose queued commands are executed atomically.

    ``MULTI`` is written in front of the first queued command, which leaves
    room to ``WATCH`` keys and read their current values with
    :meth:`~Pipeline.sync_call` before queueing. Commands queued after ``MULTI``
    are only run by :meth:`execute`.

    A command that fails while being executed does not prevent the others from
    being applied; its error is embedded in the list returned by :meth:`execute`.

    Example::

        async with client.transaction() as tx:
            tx.call("INCR", "hits")
            tx.call("INCR", "misses")
            assert await tx.execute() == [1, 1]
    """

    def __init__(
        self,
        connection_pool: ConnectionPool,
        *,
        watch: tuple[ValueT, ...] = (),
        decode: bool | None = None,
    ) -> None:
        """
        :param watch: Keys to ``WATCH`` as soon as the connection is leased
        """
        super().__init__(connection_pool, decode=decode)
        self._initial_watches = watch
        self.in_multi = False
        self.watching = False

    async def open(self) -> None:
        await super().open()
        if self._initial_watches and not self.watching:
            await self.watch(*self._initial_watches)

    async def watch(self, *keys: ValueT) -> None:
        """
        Watch :paramref:`keys` for modification. Must be issued before any
        command is queued.
        """
        if self.in_multi:
            raise RedisError("WATCH can not be issued after commands were queued")
        await self.sync_call(b"WATCH", *keys)
        self.watching = True

    async def unwatch(self) -> None:
        await self.sync_call(b"UNWATCH")
        self.watching = False

    def multi(self) -> None:
        """Start queueing. Called implicitly by the first :meth:`call`"""
        if not self.in_multi:
            self._queue(b"MULTI")
            self.in_multi = True

    def call(self, command: ValueT, *args: ValueT) -> None:
        self.multi()
        self._queue(command, *args)

    async def execute(self) -> list[ResponseType]:
        """
        Execute the queued commands.

        :return: The replies of the queued commands. Commands that failed are
         represented by their error.
        :raises: :exc:`~shardkv.exceptions.WatchError` if a watched key was modified,
         or the ``EXEC`` error reply (e.g. :exc:`~shardkv.exceptions.ExecAbortError`
         when a command could not be queued)
        """
        self.multi()
        try:
            response = await self.sync_call(b"EXEC")
        finally:
            self.in_multi = self.watching = False
        if isinstance(response, NullArray):
            raise WatchError("Watched variable changed.")
        if not isinstance(response, list):
            raise ProtocolError(f"Unexpected reply to EXEC: {response!r}")
        return response

    async def discard(self) -> None:
        """
        Drop the queued commands without running them
        """
        if self.in_multi:
            try:
                await self.sync_call(b"DISCARD")
            finally:
                self.in_multi = self.watching = False
        elif self.watching:
            await self.unwatch()

    async def close(self) -> None:
        try:
            if self._connection is not None and self._connection.usable:
                try:
                    await self.discard()
                except RedisError:
                    # the pool discards the connection on release
                    await self._connection.close()
        finally:
            await super().close()
