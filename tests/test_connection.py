from __future__ import annotations

import pytest
from anyio import create_tcp_listener
from anyio.abc import SocketAttribute

from shardkv.connection import ClusterConnection, TCPConnection, TCPLocation
from shardkv.exceptions import (
    AuthenticationFailureError,
    AuthenticationRequiredError,
    ConnectionError,
    TimeoutError,
    UnknownCommandError,
)

pytestmark = pytest.mark.anyio


class TestConnection:
    async def test_connect(self, server):
        connection = TCPConnection(server.location)
        assert not connection.usable
        await connection.connect()
        assert connection.is_connected
        assert connection.usable
        assert await connection.execute_command(b"PING") == b"PONG"
        await connection.close()
        assert not connection.is_connected
        assert not connection.usable

    async def test_connect_refused(self):
        async with await create_tcp_listener(local_host="127.0.0.1") as listener:
            port = listener.extra(SocketAttribute.local_port)
        connection = TCPConnection(TCPLocation("127.0.0.1", port))
        with pytest.raises(ConnectionError, match="Unable to establish a connection"):
            await connection.connect()
        assert not connection.usable

    async def test_connection_can_not_be_reused(self, connection):
        with pytest.raises(RuntimeError):
            await connection.connect()

    async def test_handshake(self, server):
        connection = TCPConnection(server.location, db=2, client_name="shardkv-test")
        await connection.connect()
        assert server.commands[:2] == [
            [b"SELECT", b"2"],
            [b"CLIENT", b"SETNAME", b"shardkv-test"],
        ]
        await connection.execute_command(b"SET", "k", "v")
        assert server.dbs[2][b"k"] == b"v"
        await connection.close()

    async def test_authentication(self, auth_server):
        connection = TCPConnection(auth_server.location, username="user", password="sekret")
        await connection.connect()
        assert auth_server.commands[0] == [b"AUTH", b"user", b"sekret"]
        await connection.close()

    async def test_authentication_failure(self, auth_server):
        connection = TCPConnection(auth_server.location, username="user", password="wrong")
        with pytest.raises(AuthenticationFailureError):
            await connection.connect()
        assert not connection.is_connected

    async def test_authentication_required(self, auth_server):
        connection = TCPConnection(auth_server.location)
        await connection.connect()
        with pytest.raises(AuthenticationRequiredError):
            await connection.execute_command(b"GET", "k")
        await connection.close()

    async def test_connect_callback(self, server):
        calls = []

        async def callback(connection):
            calls.append(await connection.execute_command(b"ECHO", "ready"))

        connection = TCPConnection(server.location)
        connection.register_connect_callback(callback)
        connection.register_connect_callback(lambda c: calls.append("sync"))
        await connection.connect()
        assert calls == [b"ready", "sync"]
        await connection.close()

    async def test_failing_connect_callback(self, server):
        def callback(connection):
            raise ValueError("nope")

        connection = TCPConnection(server.location)
        connection.register_connect_callback(callback)
        with pytest.raises(ConnectionError) as exc_info:
            await connection.connect()
        assert isinstance(exc_info.value.__cause__, ValueError)

    async def test_pipelined_writes_are_read_in_order(self, connection):
        connection.write_command(b"SET", "a", 1)
        connection.write_command(b"INCR", "a")
        connection.write_command(b"GET", "a")
        await connection.flush()
        assert await connection.read_response() == b"OK"
        assert await connection.read_response() == 2
        assert await connection.read_response() == b"2"

    async def test_error_reply_is_returned_by_read_response(self, connection):
        connection.write_command(b"NOPE")
        await connection.flush()
        assert isinstance(await connection.read_response(), UnknownCommandError)
        assert connection.usable

    async def test_error_reply_is_raised_by_execute_command(self, connection):
        with pytest.raises(UnknownCommandError):
            await connection.execute_command(b"NOPE")
        assert connection.usable

    async def test_decode_override(self, server):
        connection = TCPConnection(server.location, decode_responses=True)
        await connection.connect()
        assert await connection.execute_command(b"ECHO", "x") == "x"
        assert await connection.execute_command(b"ECHO", "x", decode=False) == b"x"
        await connection.close()

    async def test_stream_timeout(self, server):
        connection = TCPConnection(server.location, stream_timeout=0.1)
        await connection.connect()
        with pytest.raises(TimeoutError):
            await connection.execute_command(b"DEBUG SLEEP", 1)
        assert not connection.usable
        await connection.close()

    async def test_server_disconnect(self, server, connection):
        await server.drop_clients()
        with pytest.raises(ConnectionError):
            await connection.execute_command(b"PING")
        assert not connection.usable

    async def test_describe(self, server):
        connection = TCPConnection(server.location, db=1)
        assert repr(connection) == f"Connection<tcp://127.0.0.1:{server.port},db=1>"


class TestClusterConnection:
    async def test_readonly(self, fake_cluster_with_replicas):
        replica = fake_cluster_with_replicas.replicas[fake_cluster_with_replicas.primaries[0]][0]
        connection = ClusterConnection(replica.location, read_from_replicas=True)
        await connection.connect()
        assert replica.commands == [[b"READONLY"]]
        await connection.close()

    async def test_no_readonly_by_default(self, fake_cluster):
        connection = ClusterConnection(fake_cluster.seed)
        await connection.connect()
        assert fake_cluster.primaries[0].commands == []
        await connection.close()
