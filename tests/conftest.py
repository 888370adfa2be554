from __future__ import annotations

import pytest

import shardkv
from shardkv.connection import TCPConnection
from tests.fake_server import FakeCluster, FakeServer, SentinelState


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def server():
    async with FakeServer() as server:
        yield server


@pytest.fixture
async def auth_server():
    async with FakeServer(username="user", password="sekret") as server:
        yield server


@pytest.fixture
async def client(server):
    async with shardkv.Redis("127.0.0.1", server.port) as client:
        yield client


@pytest.fixture
async def connection(server):
    connection = TCPConnection(server.location)
    await connection.connect()
    yield connection
    await connection.close()


@pytest.fixture
async def fake_cluster():
    async with FakeCluster(shards=3) as cluster:
        yield cluster


@pytest.fixture
async def fake_cluster_with_replicas():
    async with FakeCluster(shards=2, replicas=1) as cluster:
        yield cluster


@pytest.fixture
async def cluster(fake_cluster):
    async with shardkv.RedisCluster(startup_nodes=[fake_cluster.seed]) as cluster:
        yield cluster


@pytest.fixture
def sentinel_state():
    return SentinelState()


@pytest.fixture
async def sentinel_server(sentinel_state):
    async with FakeServer(node_id="sentinel", sentinel=sentinel_state) as server:
        yield server
