from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, cast

from anyio import (
    TASK_STATUS_IGNORED,
    AsyncContextManagerMixin,
    CancelScope,
    ClosedResourceError,
    EndOfStream,
    create_memory_object_stream,
    create_task_group,
)
from anyio.abc import TaskGroup, TaskStatus
from exceptiongroup import BaseExceptionGroup, catch

from shardkv._utils import b, logger, nativestr, slot_for
from shardkv.connection import BaseConnection
from shardkv.constants import PUBLISH_MESSAGE_TYPES, SUBUNSUB_MESSAGE_TYPES, PubSubMessageTypes
from shardkv.exceptions import ConnectionError, PubSubError, RedisError
from shardkv.pool import ConnectionPool
from shardkv.typing import AsyncGenerator, Iterable, ResponseType, Self, StringT, TypedDict

if TYPE_CHECKING:
    from shardkv.client import RedisCluster
    from shardkv.cluster import ClusterNode


class PubSubMessage(TypedDict):
    #: One of ``message``, ``pmessage`` or ``smessage``
    type: str
    #: The pattern that matched the channel (``pmessage`` only)
    pattern: StringT | None
    #: The channel the message was published to
    channel: StringT
    #: The published payload
    data: StringT


class Subscription:
    """
    A connection in subscriber mode.

    Subscribing and unsubscribing only writes the request; the confirmations are
    skipped by :meth:`listen` which returns published messages only. A
    connection can not be taken out of subscriber mode, so closing the
    subscription closes its connection instead of returning it for reuse.

    Example::

        async with client.subscribe("news") as subscription:
            async for message in subscription:
                print(message["channel"], message["data"])
    """

    def __init__(
        self,
        connection_pool: ConnectionPool,
        *,
        channels: Iterable[StringT] = (),
        patterns: Iterable[StringT] = (),
        sharded_channels: Iterable[StringT] = (),
    ) -> None:
        """
        :param connection_pool: Pool used to acquire the subscriber connection
        :param channels: channels to subscribe to when the subscription is opened
        :param patterns: channel patterns to subscribe to when the subscription is opened
        :param sharded_channels: shard channels to subscribe to when the
         subscription is opened
        """
        self.connection_pool = connection_pool
        self.channels: set[StringT] = set()
        self.patterns: set[StringT] = set()
        self.sharded_channels: set[StringT] = set()
        self._initial = (list(channels), list(patterns), list(sharded_channels))
        self._connection: BaseConnection | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}<{self.connection_pool!r}>"

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> PubSubMessage:
        return await self.listen()

    @property
    def connection(self) -> BaseConnection:
        if self._connection is None:
            raise RuntimeError("Subscription is not open")
        return self._connection

    @property
    def subscribed(self) -> bool:
        """Indicates if there are subscriptions to any channels or patterns"""
        return bool(self.channels or self.patterns or self.sharded_channels)

    async def open(self) -> None:
        if self._connection is not None:
            return
        self._connection = await self.connection_pool.get_connection()
        channels, patterns, sharded_channels = self._initial
        if channels:
            await self.subscribe(*channels)
        if patterns:
            await self.psubscribe(*patterns)
        if sharded_channels:
            await self.ssubscribe(*sharded_channels)

    async def _execute_command(self, command: bytes, *args: StringT) -> None:
        self.connection.write_command(command, *args)
        await self.connection.flush()

    async def subscribe(self, *channels: StringT) -> None:
        await self._execute_command(b"SUBSCRIBE", *channels)
        self.channels.update(channels)

    async def unsubscribe(self, *channels: StringT) -> None:
        """
        Unsubscribe from :paramref:`channels`, or from every channel
        if none are given
        """
        await self._execute_command(b"UNSUBSCRIBE", *channels)
        self.channels.difference_update(channels or set(self.channels))

    async def psubscribe(self, *patterns: StringT) -> None:
        await self._execute_command(b"PSUBSCRIBE", *patterns)
        self.patterns.update(patterns)

    async def punsubscribe(self, *patterns: StringT) -> None:
        await self._execute_command(b"PUNSUBSCRIBE", *patterns)
        self.patterns.difference_update(patterns or set(self.patterns))

    async def ssubscribe(self, *channels: StringT) -> None:
        await self._execute_command(b"SSUBSCRIBE", *channels)
        self.sharded_channels.update(channels)

    async def sunsubscribe(self, *channels: StringT) -> None:
        await self._execute_command(b"SUNSUBSCRIBE", *channels)
        self.sharded_channels.difference_update(channels or set(self.sharded_channels))

    async def listen(self) -> PubSubMessage:
        """
        Wait for the next published message, skipping subscription
        confirmations.

        :raises: :exc:`~shardkv.exceptions.ConnectionError` if the connection
         was lost, or the error reply sent by the server (for example
         :exc:`~shardkv.exceptions.MovedError` for a shard channel that is not
         served by this node).
        """
        while True:
            response = await self.connection.read_response(blocking=True)
            if isinstance(response, RedisError):
                raise response
            if message := self._handle_message(response):
                return message

    def _handle_message(self, response: ResponseType) -> PubSubMessage | None:
        """
        :meta private:
        """
        if not isinstance(response, list) or not response:
            raise PubSubError(f"Unexpected reply in subscriber mode: {response!r}")
        message_type = b(response[0])
        if message_type in SUBUNSUB_MESSAGE_TYPES:
            return None
        if message_type not in PUBLISH_MESSAGE_TYPES:
            raise PubSubError(f"Unknown message type {nativestr(response[0])}")
        if message_type == PubSubMessageTypes.PMESSAGE:
            return PubSubMessage(
                type="pmessage",
                pattern=cast(StringT, response[1]),
                channel=cast(StringT, response[2]),
                data=cast(StringT, response[3]),
            )
        return PubSubMessage(
            type=nativestr(message_type),
            pattern=None,
            channel=cast(StringT, response[1]),
            data=cast(StringT, response[2]),
        )

    async def close(self) -> None:
        """
        Close the subscriber connection and release it so the pool's
        capacity is freed.
        """
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        self.channels.clear()
        self.patterns.clear()
        self.sharded_channels.clear()
        await connection.close()
        await self.connection_pool.release(connection)


class ClusterSubscription(AsyncContextManagerMixin):
    """
    Sharded subscription across a cluster.

    Shard channels are grouped by the node that owns their hash slot and one
    :class:`Subscription` is opened per node. Each node subscription is read by a
    background listener that forwards messages into a single bounded buffer
    consumed by :meth:`listen`, so a slow consumer slows the listeners down
    instead of messages piling up.

    If a listener stops for any reason other than the subscription being closed
    (e.g. its connection was lost) the buffer is closed and :meth:`listen` raises
    :exc:`~shardkv.exceptions.ConnectionError` once the messages received
    before the failure were consumed.

    Example::

        async with cluster.ssubscribe("{user1}:events", "{user2}:events") as subscription:
            async for message in subscription:
                ...
    """

    def __init__(
        self,
        cluster: RedisCluster,
        channels: Iterable[StringT] = (),
        *,
        buffer_size: int = 1024,
    ) -> None:
        """
        :param cluster: The cluster router used to locate the node for each channel
        :param channels: shard channels to subscribe to when entered
        :param buffer_size: Maximum number of messages buffered before the
         listeners stop reading from their connections
        """
        self.cluster = cluster
        self._initial_channels = list(channels)
        self._send_stream, self._receive_stream = create_memory_object_stream[PubSubMessage](
            buffer_size
        )
        self._subscriptions: dict[str, Subscription] = {}
        self._listener_scopes: dict[str, CancelScope] = {}
        self._task_group: TaskGroup | None = None
        self._error: BaseException | None = None

    @property
    def channels(self) -> set[StringT]:
        """All shard channels currently subscribed to"""
        return set().union(*(s.sharded_channels for s in self._subscriptions.values()))

    @property
    def shard_count(self) -> int:
        """Number of nodes with an open subscription"""
        return len(self._subscriptions)

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> PubSubMessage:
        return await self.listen()

    @asynccontextmanager
    async def __asynccontextmanager__(self) -> AsyncGenerator[Self]:
        def unwrap(group: BaseExceptionGroup) -> None:
            # errors raised by the owner of the context surface as they were raised
            if len(group.exceptions) == 1:
                raise group.exceptions[0]
            raise group

        with catch({Exception: unwrap}):
            async with self._send_stream, self._receive_stream, create_task_group() as tg:
                self._task_group = tg
                try:
                    if self._initial_channels:
                        await self.subscribe(*self._initial_channels)
                    yield self
                finally:
                    tg.cancel_scope.cancel()
                    with CancelScope(shield=True):
                        await self._close_subscriptions()
                    self._task_group = None

    async def _node_for_channel(self, channel: StringT) -> ClusterNode:
        return await self.cluster.node_for_slot(slot_for(channel, self.cluster.encoding))

    async def subscribe(self, *channels: StringT) -> None:
        """
        Subscribe to :paramref:`channels`, opening a subscription on every
        node that does not have one yet.
        """
        if self._task_group is None:
            raise RuntimeError("ClusterSubscription must be entered before subscribing")
        grouped: dict[str, tuple[ClusterNode, list[StringT]]] = {}
        for channel in channels:
            node = await self._node_for_channel(channel)
            grouped.setdefault(node.node_id, (node, []))[1].append(channel)

        for node_id, (node, node_channels) in grouped.items():
            if subscription := self._subscriptions.get(node_id):
                await subscription.ssubscribe(*node_channels)
                continue
            subscription = Subscription(
                self.cluster.client_for_node(node).connection_pool,
                sharded_channels=node_channels,
            )
            await subscription.open()
            self._subscriptions[node_id] = subscription
            self._listener_scopes[node_id] = await self._task_group.start(
                self._listener, node_id, subscription
            )

    async def unsubscribe(self, *channels: StringT) -> None:
        """
        Unsubscribe from :paramref:`channels`. A node subscription left without
        any channel is closed.
        """
        for channel in channels:
            for node_id, subscription in list(self._subscriptions.items()):
                if channel not in subscription.sharded_channels:
                    continue
                if subscription.sharded_channels == {channel}:
                    await self._close_subscription(node_id)
                else:
                    await subscription.sunsubscribe(channel)

    async def listen(self) -> PubSubMessage:
        """
        Wait for the next message published on any subscribed shard channel

        :raises: :exc:`~shardkv.exceptions.ConnectionError` if a node subscription failed
         or the subscription was closed.
        """
        try:
            return await self._receive_stream.receive()
        except (EndOfStream, ClosedResourceError):
            raise ConnectionError("Sharded subscription is no longer active") from self._error

    async def _listener(
        self,
        node_id: str,
        subscription: Subscription,
        *,
        task_status: TaskStatus[CancelScope] = TASK_STATUS_IGNORED,
    ) -> None:
        with CancelScope() as scope:
            task_status.started(scope)
            try:
                while True:
                    await self._send_stream.send(await subscription.listen())
            except Exception as err:
                if not scope.cancel_called:
                    self._fail(node_id, err)
                return
        if not scope.cancel_called:
            self._fail(node_id, ConnectionError(f"Listener for node {node_id} stopped"))

    def _fail(self, node_id: str, error: BaseException) -> None:
        if self._error is None:
            logger.warning("Sharded subscription to node %s failed: %s", node_id, error)
            self._error = error
        self._send_stream.close()

    async def _close_subscription(self, node_id: str) -> None:
        if scope := self._listener_scopes.pop(node_id, None):
            scope.cancel()
        if subscription := self._subscriptions.pop(node_id, None):
            await subscription.close()

    async def _close_subscriptions(self) -> None:
        for node_id in list(self._subscriptions):
            await self._close_subscription(node_id)
