from __future__ import annotations

from ._discovery import DiscoveryService
from ._layout import ShardMap, SlotRange
from ._node import ClusterNode

__all__ = ["ClusterNode", "DiscoveryService", "ShardMap", "SlotRange"]
