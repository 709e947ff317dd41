"""
Lock Managers

Per-task and per-account mutual exclusion. Keys are always acquired in
sorted order, so two operations touching the same accounts cannot
deadlock, and every acquisition is bounded by a timeout.

- InMemoryLockManager: asyncio locks, single process
- RedisLockManager: redis.asyncio locks shared across processes
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from ..core.exceptions import ConcurrencyConflict, StorageError
from ..core.interfaces import ILockManager

logger = structlog.get_logger()


def task_lock_key(task_id: str) -> str:
    return f"task:{task_id}"


def account_lock_key(user_id: str) -> str:
    return f"account:{user_id}"


class InMemoryLockManager(ILockManager):
    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; the entry goes when this reaches zero
        self._users: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        checked_out: list[str] = []
        acquired: list[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                checked_out.append(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                except TimeoutError as e:
                    raise ConcurrencyConflict(
                        f"Timed out waiting for lock {key}", lock_key=key
                    ) from e
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key in checked_out:
                self._checkin(key)


class RedisLockManager(ILockManager):
    """
    Distributed locks on top of ``redis.asyncio.Redis.lock``.

    ``ttl`` bounds how long a crashed holder can block others;
    ``timeout`` bounds how long an acquirer waits.
    """

    def __init__(
        self,
        redis: Redis,
        timeout: float = 10.0,
        ttl: float = 30.0,
        prefix: str = "escrow:lock:",
    ):
        self.redis = redis
        self.timeout = timeout
        self.ttl = ttl
        self.prefix = prefix

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        held = []
        try:
            for key in sorted(set(keys)):
                lock = self.redis.lock(
                    f"{self.prefix}{key}", timeout=self.ttl, blocking_timeout=self.timeout
                )
                try:
                    acquired = await lock.acquire()
                except RedisError as e:
                    raise StorageError(f"Lock backend unavailable for {key}", lock_key=key) from e
                if not acquired:
                    raise ConcurrencyConflict(f"Timed out waiting for lock {key}", lock_key=key)
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                try:
                    await lock.release()
                except LockError:
                    # Expired under us; the TTL already freed it
                    logger.warning("lock_release_failed", lock_key=key)
                except RedisError as e:
                    logger.warning("lock_release_error", lock_key=key, error=str(e))

    async def close(self) -> None:
        await self.redis.aclose()
