from __future__ import annotations

from typing import Any

from shardkv._utils import EncodingInsensitiveDict, logger, nativestr, pairs_to_dict
from shardkv.connection import BaseConnection, TCPConnection, TCPLocation
from shardkv.exceptions import ClusterReloadError, RedisError
from shardkv.typing import Iterable, ResponseType

from ._layout import ShardMap, SlotRange
from ._node import ClusterNode

#: Endpoint values meaning the node did not announce a usable hostname
UNKNOWN_ENDPOINTS = {"", "?"}


class DiscoveryService:
    """
    Builds a :class:`ShardMap` from the ``CLUSTER SHARDS`` report of the
    first reachable node among the startup nodes (and any nodes learned from a
    previous discovery).
    """

    def __init__(
        self,
        startup_nodes: Iterable[TCPLocation],
        *,
        connection_class: type[BaseConnection] = TCPConnection,
        **connection_kwargs: Any,
    ) -> None:
        self.startup_nodes = list(startup_nodes)
        self.connection_class = connection_class
        self.connection_kwargs = connection_kwargs
        self.encoding: str = connection_kwargs.get("encoding", "utf-8")
        self.tls = connection_kwargs.get("ssl_context") is not None

    async def discover(self, known_nodes: Iterable[TCPLocation] = ()) -> ShardMap:
        """
        :param known_nodes: Additional nodes to ask if none of the startup
         nodes answer
        :raises: :exc:`~shardkv.exceptions.ClusterReloadError` if no node answered
        """
        errors: dict[TCPLocation, RedisError] = {}
        for location in dict.fromkeys([*self.startup_nodes, *known_nodes]):
            try:
                response = await self._query(location)
            except RedisError as err:
                logger.debug("Unable to fetch cluster shards from %r: %s", location, err)
                errors[location] = err
                continue
            shard_map = self.parse_shards(response, location)
            logger.debug("Discovered %r from %r", shard_map, location)
            return shard_map
        raise ClusterReloadError(
            "Redis Cluster cannot be connected. Please provide at least one reachable node: "
            + ", ".join(f"{location}: {error}" for location, error in errors.items())
        )

    async def _query(self, location: TCPLocation) -> ResponseType:
        connection = self.connection_class(location, **self.connection_kwargs)
        try:
            await connection.connect()
            return await connection.execute_command(b"CLUSTER SHARDS", decode=False)
        finally:
            await connection.close()

    def parse_shards(self, response: ResponseType, seed: TCPLocation) -> ShardMap:
        """
        Parse a ``CLUSTER SHARDS`` reply. Nodes that do not announce an
        endpoint or ip are assumed to share the host of :paramref:`seed`.
        """
        if not isinstance(response, list):
            raise ClusterReloadError(f"Unexpected CLUSTER SHARDS reply from {seed}: {response!r}")
        ranges: list[SlotRange] = []
        for shard in response:
            info = pairs_to_dict(shard, self.encoding)
            nodes = [
                node
                for node in (
                    self._parse_node(pairs_to_dict(n, self.encoding), seed)
                    for n in info.get("nodes") or []
                )
                if node is not None
            ]
            if not nodes:
                continue
            nodes.sort(key=lambda n: not n.is_primary)
            slots = info.get("slots") or []
            for start, end in zip(slots[::2], slots[1::2]):
                ranges.append(SlotRange(int(start), int(end), tuple(nodes)))
        return ShardMap(ranges)

    def _parse_node(self, info: EncodingInsensitiveDict, seed: TCPLocation) -> ClusterNode | None:
        host = nativestr(info.get("endpoint") or "", self.encoding)
        if host in UNKNOWN_ENDPOINTS:
            host = nativestr(info.get("ip") or "", self.encoding) or seed.host
        port = info.get("tls-port") if self.tls and info.get("tls-port") else info.get("port")
        if not port:
            return None
        role = nativestr(info.get("role") or "primary", self.encoding)
        return ClusterNode(
            node_id=nativestr(info["id"], self.encoding),
            location=TCPLocation(host, int(port)),
            role="primary" if role in ("master", "primary") else "replica",
            health=nativestr(info.get("health") or "online", self.encoding),
        )
