from __future__ import annotations

import ssl
from typing import Any

from shardkv.connection import TCPLocation
from shardkv.pool import ConnectionPool
from shardkv.patterns import Pipeline, Subscription, Transaction
from shardkv.typing import ResponseType, Self, StringT, ValueT, add_runtime_checks


class Redis:
    """
    Client for a single server.

    Every :meth:`call` leases a connection from :attr:`connection_pool` for the
    duration of one request/reply exchange. Pipelines, transactions and
    subscriptions lease one connection for their whole lifetime.

    Example::

        async with Redis("localhost", 6379) as client:
            await client.call("SET", "k", "v")
            assert await client.call("GET", "k") == b"v"
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        *,
        db: int = 0,
        username: str | None = None,
        password: str | None = None,
        stream_timeout: float | None = None,
        connect_timeout: float | None = None,
        encoding: str = "utf-8",
        decode_responses: bool = False,
        client_name: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
        max_connections: int | None = None,
        pool_timeout: float | None = None,
        connection_pool: ConnectionPool | None = None,
    ) -> None:
        """
        :param host: The hostname of the server
        :param port: The port the server is listening on
        :param db: database index to select on every connection
        :param username: The username to authenticate with
        :param password: The password to authenticate with
        :param stream_timeout: Maximum time to wait for a reply
        :param connect_timeout: Maximum time to wait for establishing a connection
        :param encoding: Encoding used for string arguments and decoded replies
        :param decode_responses: Whether to decode string replies
        :param client_name: Name to register every connection with
        :param ssl_context: If provided connections are established over TLS
        :param max_connections: Maximum size of the connection pool (``None`` is unbounded)
        :param pool_timeout: Maximum time to wait for a connection from a saturated pool
        :param connection_pool: Use an existing pool instead of creating one. All
         other connection arguments are ignored if provided.
        """
        self.connection_pool = connection_pool or ConnectionPool(
            TCPLocation(host, port),
            max_connections=max_connections,
            timeout=pool_timeout,
            db=db,
            username=username,
            password=password,
            stream_timeout=stream_timeout,
            connect_timeout=connect_timeout,
            encoding=encoding,
            decode_responses=decode_responses,
            client_name=client_name,
            ssl_context=ssl_context,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}<{self.connection_pool.location}>"

    @property
    def encoding(self) -> str:
        return self.connection_pool.encoding

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @add_runtime_checks
    async def call(
        self, command: ValueT, *args: ValueT, decode: bool | None = None
    ) -> ResponseType:
        """
        Execute a single command

        :param command: the command name, e.g. ``"SET"`` or ``"CLUSTER SHARDS"``
        :param args: the command arguments
        :param decode: Overrides the client's ``decode_responses`` setting
        :raises: :exc:`~shardkv.exceptions.ResponseError` (or a subclass) if the
         server replied with an error
        """
        async with self.connection_pool.acquire() as connection:
            return await connection.execute_command(command, *args, decode=decode)

    def pipeline(self, *, decode: bool | None = None) -> Pipeline:
        return Pipeline(self.connection_pool, decode=decode)

    def transaction(self, *watch: ValueT, decode: bool | None = None) -> Transaction:
        """
        :param watch: keys to ``WATCH`` before any command is queued
        """
        return Transaction(self.connection_pool, watch=watch, decode=decode)

    def subscribe(self, *channels: StringT) -> Subscription:
        return Subscription(self.connection_pool, channels=channels)

    def psubscribe(self, *patterns: StringT) -> Subscription:
        return Subscription(self.connection_pool, patterns=patterns)

    def ssubscribe(self, *channels: StringT) -> Subscription:
        return Subscription(self.connection_pool, sharded_channels=channels)

    async def close(self) -> None:
        """
        Close every connection of the pool
        """
        await self.connection_pool.close()
