from __future__ import annotations

import pytest

from shardkv.cluster import ClusterNode, ShardMap, SlotRange
from shardkv.connection import TCPLocation
from shardkv.exceptions import RedisClusterError


def node(node_id, port, role="primary", health="online"):
    return ClusterNode(node_id, TCPLocation("127.0.0.1", port), role, health)


@pytest.fixture
def shard_map():
    a, a1 = node("a", 7000), node("a1", 7003, "replica")
    b = node("b", 7001)
    return ShardMap(
        [
            SlotRange(5462, 10922, (b,)),
            SlotRange(0, 5460, (a, a1)),
            SlotRange(5461, 5461, (a, a1)),
        ]
    )


class TestShardMap:
    def test_find(self, shard_map):
        assert [n.node_id for n in shard_map.find(0)] == ["a", "a1"]
        assert [n.node_id for n in shard_map.find(5460)] == ["a", "a1"]
        assert [n.node_id for n in shard_map.find(5461)] == ["a", "a1"]
        assert [n.node_id for n in shard_map.find(10922)] == ["b"]

    def test_unassigned_slot(self, shard_map):
        assert shard_map.find(10923) is None
        assert shard_map.find(16383) is None

    def test_empty(self):
        shard_map = ShardMap()
        assert shard_map.find(0) is None
        assert shard_map.sample() is None
        assert shard_map.nodes == []
        assert len(shard_map) == 0

    def test_ranges_are_sorted(self, shard_map):
        assert [r.start for r in shard_map] == [0, 5461, 5462]

    def test_nodes(self, shard_map):
        assert [n.node_id for n in shard_map.nodes] == ["a", "a1", "b"]
        assert [n.node_id for n in shard_map.primaries] == ["a", "b"]
        assert [n.node_id for n in shard_map.replicas] == ["a1"]

    def test_sample(self, shard_map):
        assert shard_map.sample() in [r.nodes for r in shard_map]

    def test_overlapping_ranges(self):
        with pytest.raises(RedisClusterError, match="overlaps"):
            ShardMap(
                [
                    SlotRange(0, 100, (node("a", 7000),)),
                    SlotRange(100, 200, (node("b", 7001),)),
                ]
            )

    def test_node_properties(self):
        replica = node("r", 7005, "replica", "loading")
        assert replica.name == "127.0.0.1:7005"
        assert not replica.is_primary
        assert not replica.online
