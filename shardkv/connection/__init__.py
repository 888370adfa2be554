from __future__ import annotations

from ._base import BaseConnection, BaseConnectionParams, Location
from ._cluster import ClusterConnection
from ._tcp import TCPConnection, TCPLocation

__all__ = [
    "BaseConnectionParams",
    "BaseConnection",
    "TCPConnection",
    "Location",
    "TCPLocation",
    "ClusterConnection",
]
