from __future__ import annotations

import random
import ssl
from typing import Any, cast

from anyio import Lock

from shardkv._utils import logger, slot_for, slots_for
from shardkv.client.basic import Redis
from shardkv.cluster import ClusterNode, DiscoveryService, ShardMap
from shardkv.connection import ClusterConnection, TCPConnection, TCPLocation
from shardkv.exceptions import (
    AskError,
    ClusterCrossSlotError,
    ClusterDownError,
    ClusterRoutingError,
    MovedError,
    RedisClusterError,
    RedisError,
    SlotError,
    TryAgainError,
)
from shardkv.patterns import ClusterSubscription, Pipeline, Subscription, Transaction
from shardkv.pool import ConnectionPool
from shardkv.retry import CompositeRetryPolicy, ConstantRetryPolicy, RetryPolicy
from shardkv.typing import (
    AsyncIterator,
    Iterable,
    KeyT,
    ResponseType,
    Self,
    StringT,
    ValueT,
    add_runtime_checks,
)


class RedisCluster:
    """
    Client for a sharded cluster.

    Commands are routed to the node serving the hash slot of their key(s)
    using a cached :class:`~shardkv.cluster.ShardMap`. The map is loaded on first
    use and reloaded whenever a node answers with ``MOVED``. ``ASK`` replies
    are followed once (prefixed with ``ASKING``) without reloading.

    One :class:`~shardkv.client.Redis` client (and connection pool) is kept per
    node and created on first use.

    Example::

        async with RedisCluster("localhost", 7000) as cluster:
            await cluster.call("SET", "{user1}:name", "one")
            await cluster.call("GET", "{user1}:name")
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        *,
        startup_nodes: Iterable[TCPLocation] | None = None,
        redirect_attempts: int = 3,
        read_from_replicas: bool = False,
        max_connections_per_node: int | None = None,
        pool_timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
        username: str | None = None,
        password: str | None = None,
        stream_timeout: float | None = None,
        connect_timeout: float | None = None,
        encoding: str = "utf-8",
        decode_responses: bool = False,
        client_name: str | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """
        :param host: hostname of a cluster node to discover the topology from
        :param port: port of a cluster node to discover the topology from
        :param startup_nodes: additional nodes to discover the topology from
        :param redirect_attempts: Maximum number of attempts for a command that
         keeps being redirected with ``MOVED`` or ``ASK``
        :param read_from_replicas: Whether replica connections should issue
         ``READONLY`` so that reads routed with ``primary=False`` are served
         by replicas
        :param max_connections_per_node: Maximum size of each node's connection pool
        :param pool_timeout: Maximum time to wait for a connection from a saturated pool
        :param retry_policy: Overrides the policy used to retry redirected
         commands and ``TRYAGAIN``/``CLUSTERDOWN`` errors
        """
        nodes = list(startup_nodes or [])
        if host and port:
            nodes.insert(0, TCPLocation(host, port))
        if not nodes:
            raise RedisClusterError("At least one startup node is required")
        self.redirect_attempts = redirect_attempts
        self.read_from_replicas = read_from_replicas
        self.max_connections_per_node = max_connections_per_node
        self.pool_timeout = pool_timeout
        self.encoding = encoding
        self.decode_responses = decode_responses
        self.connection_kwargs: dict[str, Any] = dict(
            username=username,
            password=password,
            stream_timeout=stream_timeout,
            connect_timeout=connect_timeout,
            encoding=encoding,
            decode_responses=decode_responses,
            client_name=client_name,
            ssl_context=ssl_context,
        )
        self.discovery = DiscoveryService(
            nodes, connection_class=TCPConnection, **self.connection_kwargs
        )
        self.retry_policy = retry_policy or CompositeRetryPolicy(
            ConstantRetryPolicy((MovedError, AskError), retries=redirect_attempts - 1, delay=0),
            ConstantRetryPolicy((TryAgainError, ClusterDownError), retries=3, delay=0.05),
        )
        self.shard_map: ShardMap | None = None
        #: node clients keyed by location and whether their connections are ``READONLY``
        self._clients: dict[tuple[TCPLocation, bool], Redis] = {}
        self._reload_lock = Lock()
        self._generation = 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}<{self.discovery.startup_nodes}>"

    async def __aenter__(self) -> Self:
        if self.shard_map is None:
            await self.reload()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def slot_for(self, key: KeyT) -> int:
        return slot_for(key, self.encoding)

    def slots_for(self, *keys: KeyT) -> dict[int, list[KeyT]]:
        """
        Group :paramref:`keys` by hash slot
        """
        return slots_for(keys, self.encoding)

    async def reload(self, *, generation: int | None = None) -> ShardMap:
        """
        Fetch the topology and replace the shard map. Clients of nodes that left
        the cluster or changed role are closed.

        :param generation: If given the reload is skipped when the map was already
         replaced since that generation was observed (concurrent redirects of
         several commands only cause one reload).
        """
        async with self._reload_lock:
            if generation is not None and generation != self._generation and self.shard_map:
                return self.shard_map
            known = [node.location for node in self.shard_map.nodes] if self.shard_map else []
            shard_map = await self.discovery.discover(known)
            self.shard_map = shard_map
            self._generation += 1
            current = {(node.location, self._readonly(node)) for node in shard_map.nodes}
            for key in [key for key in self._clients if key not in current]:
                logger.debug("Dropping client for %r after topology change", key[0])
                await self._clients.pop(key).close()
            return shard_map

    async def _get_shard_map(self) -> ShardMap:
        if self.shard_map is None:
            # callers waiting on a concurrent first load reuse its result
            return await self.reload(generation=self._generation)
        return self.shard_map

    def _loaded_shard_map(self) -> ShardMap:
        if self.shard_map is None:
            raise RedisClusterError(
                "Cluster topology has not been loaded. Enter the client or call reload()"
            )
        return self.shard_map

    @staticmethod
    def _pick(nodes: list[ClusterNode]) -> ClusterNode | None:
        online = [node for node in nodes if node.online]
        if online or nodes:
            return random.choice(online or nodes)
        return None

    def _node_for_slot(self, shard_map: ShardMap, slot: int, primary: bool) -> ClusterNode:
        nodes = shard_map.find(slot)
        if not nodes:
            raise SlotError(slot)
        primaries = [node for node in nodes if node.is_primary]
        replicas = [node for node in nodes if not node.is_primary]
        node = self._pick(primaries if primary else replicas or primaries)
        if node is None:
            raise SlotError(slot)
        return node

    async def node_for_slot(self, slot: int, primary: bool = True) -> ClusterNode:
        """
        A node serving :paramref:`slot`, chosen at random among the nodes with
        the requested role. Falls back to the primary if no replica is known.

        :raises: :exc:`~shardkv.exceptions.SlotError` if no node serves the slot
        """
        return self._node_for_slot(await self._get_shard_map(), slot, primary)

    def _readonly(self, node: ClusterNode) -> bool:
        return self.read_from_replicas and not node.is_primary

    def client_for_node(self, node: ClusterNode) -> Redis:
        return self._client_for_location(node.location, readonly=self._readonly(node))

    def _client_for_location(self, location: TCPLocation, readonly: bool = False) -> Redis:
        if (client := self._clients.get((location, readonly))) is None:
            pool = ConnectionPool(
                location,
                connection_class=ClusterConnection,
                max_connections=self.max_connections_per_node,
                timeout=self.pool_timeout,
                read_from_replicas=readonly,
                **self.connection_kwargs,
            )
            client = self._clients[location, readonly] = Redis(connection_pool=pool)
        return client

    async def client_for(self, slot: int, primary: bool = True) -> Redis:
        """
        The client for a node serving :paramref:`slot`
        """
        return self.client_for_node(await self.node_for_slot(slot, primary))

    async def any_client(self, primary: bool = True) -> Redis:
        """
        The client for a random node with the requested role
        """
        shard_map = await self._get_shard_map()
        node = self._pick(
            shard_map.primaries if primary else shard_map.replicas or shard_map.primaries
        )
        if node is None:
            raise ClusterRoutingError("No nodes are known for the cluster")
        return self.client_for_node(node)

    async def clients_for(
        self, *keys: KeyT, primary: bool = True
    ) -> AsyncIterator[tuple[Redis, list[KeyT]]]:
        """
        Yields the client serving each group of :paramref:`keys` that share a slot
        """
        for slot, slot_keys in self.slots_for(*keys).items():
            yield await self.client_for(slot, primary), slot_keys

    def _slot_for_keys(self, keys: Iterable[KeyT]) -> int | None:
        slots = set(self.slots_for(*keys))
        if len(slots) > 1:
            raise ClusterCrossSlotError()
        return slots.pop() if slots else None

    @add_runtime_checks
    async def call(
        self,
        command: ValueT,
        *args: ValueT,
        keys: Iterable[KeyT] | None = None,
        primary: bool = True,
        decode: bool | None = None,
    ) -> ResponseType:
        """
        Execute a command on the node serving its keys.

        :param keys: The keys the command operates on. Defaults to the first
         argument. Commands without keys are sent to any node.
        :param primary: Whether to route to a primary or (if available) a replica.
         Ignored unless the client was created with ``read_from_replicas``.
        :raises: :exc:`~shardkv.exceptions.ClusterCrossSlotError` if the keys map
         to different slots, :exc:`~shardkv.exceptions.SlotError` if no node serves
         the slot, or the last redirection error once the attempts are exhausted
        """
        if keys is None:
            keys = [args[0]] if args and isinstance(args[0], (str, bytes)) else []
        slot = self._slot_for_keys(keys)
        # replicas redirect every request unless the connection is READONLY
        primary = primary or not self.read_from_replicas
        ask_location: TCPLocation | None = None
        generation = self._generation

        async def _execute() -> ResponseType:
            nonlocal ask_location, generation
            generation = self._generation
            if ask_location is not None:
                location, ask_location = ask_location, None
                return await self._execute_asking(location, command, *args, decode=decode)
            if slot is None:
                client = await self.any_client(primary)
            else:
                client = await self.client_for(slot, primary)
            return await client.call(command, *args, decode=decode)

        async def _moved(error: BaseException) -> None:
            await self.reload(generation=generation)

        async def _ask(error: BaseException) -> None:
            nonlocal ask_location
            ask_error = cast(AskError, error)
            ask_location = TCPLocation(ask_error.host, ask_error.port)

        async def _cluster_down(error: BaseException) -> None:
            await self.reload(generation=generation)

        return await self.retry_policy.call_with_retries(
            _execute,
            failure_hook={
                MovedError: _moved,
                AskError: _ask,
                ClusterDownError: _cluster_down,
            },
        )

    async def _execute_asking(
        self, location: TCPLocation, command: ValueT, *args: ValueT, decode: bool | None
    ) -> ResponseType:
        async with self._client_for_location(location).pipeline(decode=decode) as pipeline:
            pipeline.call(b"ASKING")
            pipeline.call(command, *args)
            _, response = await pipeline.collect()
        if isinstance(response, RedisError):
            raise response
        return response

    async def publish(self, channel: StringT, message: ValueT) -> int:
        """
        Publish on a global channel. Messages propagate to every node so any
        node can be used.
        """
        client = await self.any_client()
        return int(await client.call(b"PUBLISH", channel, message))  # type: ignore[arg-type]

    async def spublish(self, channel: StringT, message: ValueT) -> int:
        """
        Publish on a shard channel through the node owning its slot
        """
        return int(await self.call(b"SPUBLISH", channel, message, keys=[channel]))  # type: ignore[arg-type]

    def subscribe(self, *channels: StringT) -> Subscription:
        """
        Subscribe to global channels through a random node
        """
        return self._any_loaded_client().subscribe(*channels)

    def psubscribe(self, *patterns: StringT) -> Subscription:
        """
        Subscribe to global channel patterns through a random node
        """
        return self._any_loaded_client().psubscribe(*patterns)

    def ssubscribe(self, *channels: StringT, buffer_size: int = 1024) -> ClusterSubscription:
        """
        Subscribe to shard channels on the nodes owning them. The returned
        subscription must be entered with ``async with``.
        """
        return ClusterSubscription(self, channels, buffer_size=buffer_size)

    def _any_loaded_client(self) -> Redis:
        node = self._pick(self._loaded_shard_map().primaries)
        if node is None:
            raise ClusterRoutingError("No nodes are known for the cluster")
        return self.client_for_node(node)

    def _client_for_key(self, key: KeyT, primary: bool) -> Redis:
        return self.client_for_node(
            self._node_for_slot(
                self._loaded_shard_map(),
                self.slot_for(key),
                primary or not self.read_from_replicas,
            )
        )

    def pipeline(self, key: KeyT, *, primary: bool = True, decode: bool | None = None) -> Pipeline:
        """
        A pipeline on the node serving the slot of :paramref:`key`. Every
        command sent through it must operate on keys of that slot.
        """
        return self._client_for_key(key, primary).pipeline(decode=decode)

    def transaction(
        self, key: KeyT, *watch: KeyT, decode: bool | None = None
    ) -> Transaction:
        """
        A transaction on the primary serving the slot of :paramref:`key`
        """
        return self._client_for_key(key, True).transaction(*watch, decode=decode)

    async def close(self) -> None:
        """
        Close the connection pools of every node
        """
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.close()
