from __future__ import annotations

from shardkv.typing import Unpack

from ._base import BaseConnectionParams
from ._tcp import TCPConnection, TCPLocation


class ClusterConnection(TCPConnection):
    "Manages TCP communication to and from a cluster node"

    def __init__(
        self,
        location: TCPLocation,
        *,
        read_from_replicas: bool = False,
        **kwargs: Unpack[BaseConnectionParams],
    ) -> None:
        """
        :param read_from_replicas: If ``True`` the connection issues ``READONLY``
         after the handshake so that a replica serves reads for its slots
         instead of redirecting them to the primary.
        """
        self.read_from_replicas = read_from_replicas
        super().__init__(location, **kwargs)
        if self.read_from_replicas:
            self.register_connect_callback(self._enable_readonly)

    @staticmethod
    async def _enable_readonly(connection: TCPConnection) -> None:
        await connection.execute_command(b"READONLY")

    def describe(self) -> str:
        return (
            f"ClusterConnection<host={self.location.host},port={self.location.port}"
            f",readonly={self.read_from_replicas}>"
        )
