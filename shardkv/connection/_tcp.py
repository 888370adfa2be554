from __future__ import annotations

import dataclasses

from anyio import connect_tcp, fail_after
from anyio.abc import ByteStream

from shardkv.typing import Unpack

from ._base import BaseConnection, BaseConnectionParams, Location


@dataclasses.dataclass(unsafe_hash=True)
class TCPLocation(Location):
    """
    Address of a server, a cluster node or a sentinel. Hashable so that it
    can key the per node client cache of :class:`~shardkv.RedisCluster`.
    """

    host: str
    port: int

    def __repr__(self) -> str:
        return f"<host={self.host},port={self.port}>"


class TCPConnection(BaseConnection):
    """
    RESP2 connection over tcp, optionally wrapped in TLS when an
    ``ssl_context`` is given.
    """

    location: TCPLocation

    def __init__(
        self,
        location: TCPLocation,
        **kwargs: Unpack[BaseConnectionParams],
    ):
        """
        :param location: The server to connect to
        :param kwargs: handshake, timeout and decoding options
         (see :class:`~shardkv.connection.BaseConnectionParams`)
        """
        super().__init__(location, **kwargs)

    async def _connect(self) -> ByteStream:
        with fail_after(self._connect_timeout):
            return await connect_tcp(
                self.location.host,
                self.location.port,
                tls=self._ssl_context is not None,
                ssl_context=self._ssl_context,
                tls_standard_compatible=False,
            )

    def describe(self) -> str:
        scheme = "tls" if self._ssl_context else "tcp"
        return (
            f"Connection<{scheme}://{self.location.host}:{self.location.port},db={self._db}>"
        )
