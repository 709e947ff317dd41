"""Tests for the lock managers"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from escrow_ledger.core.exceptions import ConcurrencyConflict, StorageError
from escrow_ledger.infrastructure.locking import (
    InMemoryLockManager,
    RedisLockManager,
    account_lock_key,
    task_lock_key,
)


def test_key_names():
    assert task_lock_key("t-1") == "task:t-1"
    assert account_lock_key("u-1") == "account:u-1"


# =============================================================================
# In-memory
# =============================================================================


class TestInMemoryLockManager:
    async def test_excludes_same_key(self):
        locks = InMemoryLockManager(timeout=0.05)

        async with locks.hold("task:1"):
            with pytest.raises(ConcurrencyConflict):
                async with locks.hold("task:1"):
                    pass

    async def test_distinct_keys_do_not_block(self):
        locks = InMemoryLockManager(timeout=0.05)

        async with locks.hold("task:1"):
            async with locks.hold("task:2"):
                pass

    async def test_released_on_error(self):
        locks = InMemoryLockManager(timeout=0.05)

        with pytest.raises(RuntimeError):
            async with locks.hold("account:a", "account:b"):
                raise RuntimeError("boom")

        async with locks.hold("account:b", "account:a"):
            pass

    async def test_partial_acquire_released_on_timeout(self):
        locks = InMemoryLockManager(timeout=0.05)

        async with locks.hold("account:b"):
            with pytest.raises(ConcurrencyConflict):
                async with locks.hold("account:a", "account:b"):
                    pass
            # account:a was taken first and must have been given back
            async with locks.hold("account:a"):
                pass

    async def test_waiters_serialize(self):
        locks = InMemoryLockManager(timeout=1.0)
        order = []

        async def worker(name):
            async with locks.hold("task:1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    async def test_released_keys_are_forgotten(self):
        locks = InMemoryLockManager(timeout=0.05)

        for n in range(50):
            async with locks.hold(f"task:{n}", "account:a"):
                pass
        with pytest.raises(ConcurrencyConflict):
            async with locks.hold("account:a"):
                async with locks.hold("account:a"):
                    pass

        assert locks._locks == {}

    async def test_key_kept_while_waiters_remain(self):
        locks = InMemoryLockManager(timeout=1.0)
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("task:1"):
                entered.set()
                await release.wait()

        async def waiter():
            await entered.wait()
            async with locks.hold("task:1"):
                assert "task:1" in locks._locks

        tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
        await entered.wait()
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(*tasks)

        assert locks._locks == {}

    async def test_no_keys(self):
        async with InMemoryLockManager().hold():
            pass


# =============================================================================
# Redis
# =============================================================================


@pytest.fixture
def redis_client():
    """Redis client whose lock() hands out one AsyncMock lock per name"""
    client = MagicMock()
    client.aclose = AsyncMock()
    client.issued = {}

    def make_lock(name, **kwargs):
        lock = AsyncMock()
        lock.acquire.return_value = True
        lock.kwargs = kwargs
        client.issued[name] = lock
        return lock

    client.lock.side_effect = make_lock
    return client


class TestRedisLockManager:
    async def test_acquires_sorted_and_releases(self, redis_client):
        locks = RedisLockManager(redis_client, timeout=2.0, ttl=15.0)

        async with locks.hold("task:1", "account:b", "account:a"):
            pass

        names = [call.args[0] for call in redis_client.lock.call_args_list]
        assert names == [
            "escrow:lock:account:a",
            "escrow:lock:account:b",
            "escrow:lock:task:1",
        ]
        for lock in redis_client.issued.values():
            assert lock.kwargs == {"timeout": 15.0, "blocking_timeout": 2.0}
            lock.release.assert_awaited_once()

    async def test_not_acquired_is_conflict(self, redis_client):
        locks = RedisLockManager(redis_client)

        def busy(name, **kwargs):
            lock = AsyncMock()
            lock.acquire.return_value = name.endswith("account:a")
            redis_client.issued[name] = lock
            return lock

        redis_client.lock.side_effect = busy
        with pytest.raises(ConcurrencyConflict):
            async with locks.hold("account:a", "account:b"):
                pass

        redis_client.issued["escrow:lock:account:a"].release.assert_awaited_once()
        redis_client.issued["escrow:lock:account:b"].release.assert_not_awaited()

    async def test_backend_error_is_storage_error(self, redis_client):
        locks = RedisLockManager(redis_client)

        def broken(name, **kwargs):
            lock = AsyncMock()
            lock.acquire.side_effect = RedisConnectionError("connection refused")
            return lock

        redis_client.lock.side_effect = broken
        with pytest.raises(StorageError):
            async with locks.hold("task:1"):
                pass

    async def test_expired_lock_release_is_logged(self, redis_client):
        locks = RedisLockManager(redis_client)

        async with locks.hold("task:1"):
            redis_client.issued["escrow:lock:task:1"].release.side_effect = LockError("expired")

    async def test_close(self, redis_client):
        await RedisLockManager(redis_client).close()
        redis_client.aclose.assert_awaited_once()
