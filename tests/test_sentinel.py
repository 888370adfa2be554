from __future__ import annotations

import pytest

from shardkv import Sentinel
from shardkv.connection import TCPLocation
from shardkv.exceptions import (
    ConnectionError,
    PrimaryNotFoundError,
    ReplicaNotFoundError,
    ResponseError,
)
from shardkv.pool import SentinelConnectionPool
from tests.fake_server import FakeServer

pytestmark = pytest.mark.anyio

UNREACHABLE = TCPLocation("127.0.0.1", 1)


@pytest.fixture
async def primary():
    async with FakeServer(node_id="primary") as server:
        yield server


@pytest.fixture
async def replica():
    async with FakeServer(node_id="replica") as server:
        yield server


@pytest.fixture
async def sentinel(sentinel_server, sentinel_state, primary, replica):
    sentinel_state.monitor(
        "mymaster",
        primary.location,
        [
            (replica.location, "slave"),
            (TCPLocation("127.0.0.1", 2), "slave,s_down"),
            (TCPLocation("127.0.0.1", 3), "slave,disconnected"),
        ],
    )
    async with Sentinel([UNREACHABLE, sentinel_server.location]) as sentinel:
        yield sentinel


class TestSentinel:
    async def test_discover_primary(self, sentinel, primary):
        assert await sentinel.discover_primary("mymaster") == primary.location

    async def test_responding_sentinel_moves_to_front(self, sentinel, sentinel_server):
        await sentinel.discover_primary()
        assert sentinel.sentinels[0] == sentinel_server.location

    async def test_discover_primary_unknown_service(self, sentinel):
        with pytest.raises(PrimaryNotFoundError):
            await sentinel.discover_primary("unknown")

    async def test_no_sentinel_reachable(self):
        async with Sentinel([UNREACHABLE]) as sentinel:
            with pytest.raises(PrimaryNotFoundError):
                await sentinel.discover_primary()
            assert await sentinel.discover_replicas() == []
            with pytest.raises(ConnectionError):
                await sentinel.masters()

    async def test_discover_replicas_skips_down_replicas(self, sentinel, replica):
        assert await sentinel.discover_replicas("mymaster") == [replica.location]

    async def test_resolve(self, sentinel, primary, replica):
        assert await sentinel.resolve("primary") == primary.location
        assert await sentinel.resolve("replica") == replica.location

    async def test_resolve_replica_falls_back_to_primary(self, sentinel, sentinel_state, primary):
        sentinel_state.services["mymaster"]["replicas"] = []
        assert await sentinel.resolve("replica") == primary.location

    async def test_resolve_replica_without_service(self, sentinel):
        with pytest.raises(ReplicaNotFoundError):
            await sentinel.resolve("replica", "unknown")

    async def test_masters(self, sentinel, primary):
        masters = await sentinel.masters()
        assert list(masters) == ["mymaster"]
        assert masters["mymaster"]["ip"] == "127.0.0.1"
        assert int(masters["mymaster"]["port"]) == primary.port

    async def test_master(self, sentinel):
        state = await sentinel.master("mymaster")
        assert state["flags"] == "master"
        with pytest.raises(ResponseError):
            await sentinel.master("unknown")

    async def test_failover(self, sentinel, replica):
        assert await sentinel.failover("mymaster")
        assert await sentinel.discover_primary() == replica.location

    async def test_primary_for(self, sentinel, primary):
        client = sentinel.primary_for("mymaster")
        assert isinstance(client.connection_pool, SentinelConnectionPool)
        await client.call("SET", "k", "v")
        assert primary.dbs[0][b"k"] == b"v"
        await client.close()

    async def test_replica_for(self, sentinel, replica):
        client = sentinel.replica_for()
        await client.call("SET", "k", "v")
        assert replica.dbs[0][b"k"] == b"v"
        await client.close()

    async def test_connections_follow_failover(self, sentinel, primary, replica):
        client = sentinel.primary_for(max_connections=1)
        await client.call("SET", "k", "before")
        await sentinel.failover()
        await primary.drop_clients()
        with pytest.raises(ConnectionError):
            await client.call("PING")
        await client.call("SET", "k", "after")
        assert replica.dbs[0][b"k"] == b"after"
        assert primary.dbs[0][b"k"] == b"before"
        await client.close()

    async def test_connection_kwargs(self, sentinel, primary):
        client = sentinel.primary_for(db=4)
        await client.call("SET", "k", "v")
        assert b"k" in primary.dbs[4]
        await client.close()

    def test_repr(self):
        sentinel = Sentinel([("localhost", 26379)])
        assert repr(sentinel) == "Sentinel<sentinels=[<host=localhost,port=26379>]>"
