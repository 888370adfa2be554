from __future__ import annotations

import bisect
import random

from shardkv.exceptions import RedisClusterError
from shardkv.typing import Iterable, Iterator, NamedTuple

from ._node import ClusterNode


class SlotRange(NamedTuple):
    #: first slot of the range
    start: int
    #: last slot of the range (inclusive)
    end: int
    #: nodes serving the range, primary first
    nodes: tuple[ClusterNode, ...]


class ShardMap:
    """
    Immutable mapping of slot ranges to the nodes that serve them.

    Ranges never overlap but do not have to cover every slot; looking up an
    unassigned slot returns ``None``. A new map is built on every topology
    reload instead of updating an existing one, so readers never observe a
    partially updated topology.
    """

    def __init__(self, ranges: Iterable[SlotRange] = ()) -> None:
        self._ranges: tuple[SlotRange, ...] = tuple(sorted(ranges, key=lambda r: r.start))
        for previous, current in zip(self._ranges, self._ranges[1:]):
            if current.start <= previous.end:
                raise RedisClusterError(
                    f"Slot range {current.start}-{current.end} overlaps"
                    f" {previous.start}-{previous.end}"
                )
        self._starts = [r.start for r in self._ranges]

    def __repr__(self) -> str:
        return f"ShardMap<ranges={len(self._ranges)}, nodes={len(self.nodes)}>"

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[SlotRange]:
        return iter(self._ranges)

    def find(self, slot: int) -> tuple[ClusterNode, ...] | None:
        """
        The nodes serving :paramref:`slot` or ``None`` if it is not assigned
        """
        idx = bisect.bisect_right(self._starts, slot) - 1
        if idx >= 0 and slot <= self._ranges[idx].end:
            return self._ranges[idx].nodes
        return None

    def sample(self) -> tuple[ClusterNode, ...] | None:
        """The nodes of a randomly chosen range"""
        return random.choice(self._ranges).nodes if self._ranges else None

    @property
    def nodes(self) -> list[ClusterNode]:
        seen: dict[str, ClusterNode] = {}
        for slot_range in self._ranges:
            for node in slot_range.nodes:
                seen.setdefault(node.node_id, node)
        return list(seen.values())

    @property
    def primaries(self) -> list[ClusterNode]:
        return [n for n in self.nodes if n.is_primary]

    @property
    def replicas(self) -> list[ClusterNode]:
        return [n for n in self.nodes if not n.is_primary]
