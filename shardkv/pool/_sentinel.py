from __future__ import annotations

from typing import TYPE_CHECKING, Any

from shardkv.connection import BaseConnection
from shardkv.typing import Literal

from ._basic import ConnectionPool

if TYPE_CHECKING:
    from shardkv.sentinel import Sentinel


class SentinelConnectionPool(ConnectionPool):
    """
    Sentinel backed connection pool.

    The address of the server is asked from the sentinels every time a new
    connection is created, so a failover is picked up as connections are
    replaced. Existing connections are never migrated.
    """

    def __init__(
        self,
        service_name: str,
        sentinel_manager: Sentinel,
        *,
        role: Literal["primary", "replica"] = "primary",
        **kwargs: Any,
    ):
        """
        :param service_name: Name of the service the sentinels monitor
        :param sentinel_manager: The resolver used to find the service's address
        :param role: Whether connections go to the primary or to one of the replicas
        """
        self.service_name = service_name
        self.sentinel_manager = sentinel_manager
        self.role = role
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}<service={self.service_name}({self.role})>"

    async def _construct_connection(self) -> BaseConnection:
        location = await self.sentinel_manager.resolve(self.role, self.service_name)
        connection = self.connection_class(location, **self.connection_kwargs)
        await connection.connect()
        return connection
