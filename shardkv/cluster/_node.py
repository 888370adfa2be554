from __future__ import annotations

import dataclasses

from shardkv.connection import TCPLocation
from shardkv.typing import Literal


@dataclasses.dataclass(frozen=True)
class ClusterNode:
    """
    A primary or replica serving a set of hash slots
    """

    #: The id the cluster assigned to the node
    node_id: str
    #: Where the node accepts connections
    location: TCPLocation
    #: Whether the node serves writes (``primary``) or replicates (``replica``)
    role: Literal["primary", "replica"] = "primary"
    #: Health as reported by the cluster (``online``, ``failed`` or ``loading``)
    health: str = "online"

    @property
    def name(self) -> str:
        return f"{self.location.host}:{self.location.port}"

    @property
    def is_primary(self) -> bool:
        return self.role == "primary"

    @property
    def online(self) -> bool:
        return self.health == "online"
