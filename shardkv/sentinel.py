from __future__ import annotations

import random
from typing import Any

from shardkv._utils import nativestr, pairs_to_dict
from shardkv.client import Redis
from shardkv.connection import TCPLocation
from shardkv.exceptions import (
    ConnectionError,
    PrimaryNotFoundError,
    ReplicaNotFoundError,
    ResponseError,
    TimeoutError,
)
from shardkv.pool import SentinelConnectionPool
from shardkv.typing import Iterable, Literal, ResponseType, Self

#: Flags that mark an instance as unusable in sentinel reports
DOWN_FLAGS = frozenset({"s_down", "o_down", "disconnected"})


class Sentinel:
    """
    Resolves the address of a sentinel monitored service.

    Sentinels are asked in order; a sentinel that can not be reached is
    skipped and the one that answers is moved to the front of the list.

    Example::

        sentinel = Sentinel([("localhost", 26379)], service_name="mymaster")
        primary = sentinel.primary_for()
        await primary.call("SET", "k", "v")
    """

    def __init__(
        self,
        sentinels: Iterable[tuple[str, int] | TCPLocation],
        service_name: str = "mymaster",
        *,
        sentinel_kwargs: dict[str, Any] | None = None,
        **connection_kwargs: Any,
    ) -> None:
        """
        :param sentinels: The sentinel nodes, as ``(host, port)`` pairs or locations
        :param service_name: The service to resolve when no name is given explicitly
        :param sentinel_kwargs: Arguments for the :class:`~shardkv.client.Redis`
         clients connecting to the sentinels
        :param connection_kwargs: Connection arguments for the clients returned by
         :meth:`primary_for` and :meth:`replica_for`
        """
        self.sentinels: list[TCPLocation] = [
            s if isinstance(s, TCPLocation) else TCPLocation(*s) for s in sentinels
        ]
        self.service_name = service_name
        self.sentinel_kwargs = sentinel_kwargs or {}
        self.connection_kwargs = connection_kwargs
        self._clients: dict[TCPLocation, Redis] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}<sentinels=[{','.join(map(repr, self.sentinels))}]>"

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _client(self, location: TCPLocation) -> Redis:
        if (client := self._clients.get(location)) is None:
            client = self._clients[location] = Redis(
                location.host, location.port, **self.sentinel_kwargs
            )
        return client

    async def _ask(self, *args: Any) -> ResponseType:
        """
        Send a ``SENTINEL`` command to the first sentinel that answers
        """
        errors: list[Exception] = []
        for index, location in enumerate(list(self.sentinels)):
            try:
                response = await self._client(location).call(b"SENTINEL", *args, decode=True)
            except (ConnectionError, TimeoutError) as err:
                errors.append(err)
                continue
            if index:
                self.sentinels.insert(0, self.sentinels.pop(index))
            return response
        raise ConnectionError(f"No sentinel could be reached: {errors}")

    async def resolve(
        self, role: Literal["primary", "replica"] = "primary", service_name: str | None = None
    ) -> TCPLocation:
        """
        The current address of the service's primary, or of a random healthy
        replica (the primary if the service has none).
        """
        service_name = service_name or self.service_name
        if role == "primary":
            return await self.discover_primary(service_name)
        if replicas := await self.discover_replicas(service_name):
            return random.choice(replicas)
        try:
            return await self.discover_primary(service_name)
        except PrimaryNotFoundError:
            raise ReplicaNotFoundError(f"No replica found for {service_name!r}")

    async def discover_primary(self, service_name: str | None = None) -> TCPLocation:
        """
        :raises: :exc:`~shardkv.exceptions.PrimaryNotFoundError` if no sentinel
         knows the primary of the service
        """
        service_name = service_name or self.service_name
        for index, location in enumerate(list(self.sentinels)):
            try:
                address = await self._client(location).call(
                    b"SENTINEL GET-MASTER-ADDR-BY-NAME", service_name, decode=True
                )
            except (ConnectionError, TimeoutError):
                continue
            if isinstance(address, list) and len(address) == 2:
                if index:
                    self.sentinels.insert(0, self.sentinels.pop(index))
                return TCPLocation(nativestr(address[0]), int(address[1]))  # type: ignore[arg-type]
        raise PrimaryNotFoundError(f"No primary found for {service_name!r}")

    async def discover_replicas(self, service_name: str | None = None) -> list[TCPLocation]:
        """
        The replicas of the service that are not flagged as down or disconnected
        """
        service_name = service_name or self.service_name
        for location in self.sentinels:
            try:
                replicas = await self._client(location).call(
                    b"SENTINEL SLAVES", service_name, decode=True
                )
            except (ConnectionError, ResponseError, TimeoutError):
                continue
            if not isinstance(replicas, list):
                continue
            alive: list[TCPLocation] = []
            for replica in replicas:
                info = pairs_to_dict(replica)
                flags = set(nativestr(info.get("flags") or "").split(","))
                if flags & DOWN_FLAGS:
                    continue
                alive.append(TCPLocation(nativestr(info["ip"]), int(info["port"])))
            return alive
        return []

    async def masters(self) -> dict[str, dict[str, ResponseType]]:
        """
        The state of every service monitored by the sentinels, keyed by name
        """
        response = await self._ask(b"MASTERS")
        states: dict[str, dict[str, ResponseType]] = {}
        for entry in response if isinstance(response, list) else []:
            state = dict(pairs_to_dict(entry))
            states[nativestr(state["name"])] = state
        return states

    async def master(self, service_name: str | None = None) -> dict[str, ResponseType]:
        """
        The state of the service's primary as reported by a sentinel
        """
        return dict(pairs_to_dict(await self._ask(b"MASTER", service_name or self.service_name)))

    async def failover(self, service_name: str | None = None) -> bool:
        """
        Force a failover of the service as if its primary was not reachable
        """
        return await self._ask(b"FAILOVER", service_name or self.service_name) == "OK"

    def primary_for(self, service_name: str | None = None, **kwargs: Any) -> Redis:
        """
        A client whose connections go to the service's primary. The primary is
        resolved again every time a new connection is created.
        """
        return self._managed_client("primary", service_name, kwargs)

    def replica_for(self, service_name: str | None = None, **kwargs: Any) -> Redis:
        """
        A client whose connections go to a replica of the service
        """
        return self._managed_client("replica", service_name, kwargs)

    def _managed_client(
        self, role: Literal["primary", "replica"], service_name: str | None, kwargs: dict[str, Any]
    ) -> Redis:
        pool = SentinelConnectionPool(
            service_name or self.service_name,
            self,
            role=role,
            **{**self.connection_kwargs, **kwargs},
        )
        return Redis(connection_pool=pool)

    async def close(self) -> None:
        """Close the connections to the sentinels"""
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.close()
