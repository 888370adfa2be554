from __future__ import annotations

import pytest
from anyio import create_task_group, fail_after, move_on_after, sleep

import shardkv
from shardkv.connection import TCPLocation
from shardkv.exceptions import ConnectionError

pytestmark = pytest.mark.anyio


class TestConnectionPool:
    def get_pool(self, server, max_connections=None, **kwargs):
        return shardkv.ConnectionPool(server.location, max_connections=max_connections, **kwargs)

    async def test_multiple_connections(self, server):
        async with self.get_pool(server) as pool:
            c1 = await pool.get_connection()
            c2 = await pool.get_connection()
            assert c1 is not c2
            assert pool.in_use == 2

    async def test_reuse_previously_released_connection(self, server):
        async with self.get_pool(server) as pool:
            c1 = await pool.get_connection()
            await pool.release(c1)
            c2 = await pool.get_connection()
            assert c1 is c2
            assert pool.size == 1

    async def test_acquire_context(self, server):
        async with self.get_pool(server) as pool:
            async with pool.acquire() as connection:
                assert pool.in_use == 1
                assert await connection.execute_command(b"PING") == b"PONG"
            assert pool.in_use == 0
            assert pool.size == 1

    async def test_connection_kwargs(self, server):
        async with self.get_pool(server, client_name="pooled", db=3) as pool:
            connection = await pool.get_connection()
            assert connection.client_name == "pooled"
            assert [b"SELECT", b"3"] in server.commands

    async def test_max_connections_waits_for_release(self, server):
        async with self.get_pool(server, max_connections=1) as pool:
            first = await pool.get_connection()
            acquired = []

            async def waiter():
                acquired.append(await pool.get_connection())

            async with create_task_group() as tg:
                tg.start_soon(waiter)
                await sleep(0.05)
                assert acquired == []
                await pool.release(first)
            assert acquired == [first]
            assert pool.size == 1

    async def test_timeout(self, server):
        async with self.get_pool(server, max_connections=1, timeout=0.05) as pool:
            await pool.get_connection()
            with pytest.raises(TimeoutError):
                await pool.get_connection()

    async def test_abandoned_waiter_is_forgotten(self, server):
        async with self.get_pool(server, max_connections=1) as pool:
            first = await pool.get_connection()
            with move_on_after(0.05):
                await pool.get_connection()
            await pool.release(first)
            with fail_after(1):
                assert await pool.get_connection() is first

    async def test_concurrent_callers_share_a_bounded_pool(self, server):
        async with shardkv.Redis("127.0.0.1", server.port, max_connections=2) as client:
            results = []

            async def incr():
                results.append(await client.call("INCR", "counter"))

            with fail_after(5):
                async with create_task_group() as tg:
                    for _ in range(50):
                        tg.start_soon(incr)
            assert sorted(results) == list(range(1, 51))
            assert client.connection_pool.size <= 2

    async def test_connector_failure(self):
        pool = shardkv.ConnectionPool(TCPLocation("127.0.0.1", 1), max_connections=1)
        for _ in range(3):
            with pytest.raises(ConnectionError):
                await pool.get_connection()
        assert pool.size == 0

    async def test_connector_failure_wakes_a_waiter(self, server, mocker):
        async with self.get_pool(server, max_connections=1) as pool:
            construct = pool._construct_connection
            attempts = 0

            async def flaky():
                nonlocal attempts
                attempts += 1
                if attempts == 1:
                    await sleep(0.05)
                    raise ConnectionError("boom")
                return await construct()

            mocker.patch.object(pool, "_construct_connection", flaky)
            results = []

            async def lease():
                try:
                    results.append(await pool.get_connection())
                except ConnectionError as err:
                    results.append(err)

            with fail_after(1):
                async with create_task_group() as tg:
                    tg.start_soon(lease)
                    await sleep(0.01)
                    tg.start_soon(lease)
            assert isinstance(results[0], ConnectionError)
            assert results[1].usable
            assert pool.size == 1

    async def test_release_unusable_connection(self, server):
        async with self.get_pool(server, max_connections=1) as pool:
            connection = await pool.get_connection()
            await connection.close()
            await pool.release(connection)
            assert pool.size == 0
            replacement = await pool.get_connection()
            assert replacement is not connection
            assert replacement.usable

    async def test_stale_idle_connection_is_replaced(self, server):
        async with self.get_pool(server) as pool:
            connection = await pool.get_connection()
            await pool.release(connection)
            await connection.close()
            assert await pool.get_connection() is not connection
            assert pool.size == 1

    async def test_close_wakes_waiters(self, server):
        pool = self.get_pool(server, max_connections=1)
        leased = await pool.get_connection()
        errors = []

        async def waiter():
            try:
                await pool.get_connection()
            except ConnectionError as err:
                errors.append(err)

        with fail_after(1):
            async with create_task_group() as tg:
                tg.start_soon(waiter)
                await sleep(0.05)
                await pool.close()
        assert len(errors) == 1
        assert not leased.is_connected
        assert pool.size == 0

    async def test_pool_is_usable_after_close(self, server):
        pool = self.get_pool(server, max_connections=1)
        leased = await pool.get_connection()
        await pool.close()
        await pool.release(leased)
        connection = await pool.get_connection()
        assert connection.usable
        await pool.close()
