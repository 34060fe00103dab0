"""Per-document single-writer locks for Runs and ProcessRuns.

``LocalLocks`` is enough for one worker process. ``RedisLocks`` extends the
guarantee across ``uvicorn --workers N`` and the standalone scheduler.

Typical usage:

    async with locks.hold(f"run:{run_id}"):
        run = await repo.get_run(run_id)
        ...
        await repo.update_run(run)
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from procflow.cache.redis_client import RedisClient
from procflow.exceptions import LockTimeout

# Lua CAS release: only delete if we still own the lock
_LUA_RELEASE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockManager(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]:
        ...


class LocalLocks:
    """asyncio.Lock per key. Not reentrant.

    A key's lock is dropped once nobody holds or waits on it.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise LockTimeout(f"Could not acquire lock for {key}") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class DistributedLock:
    """Redis-based lock for a single resource, released only by its owner."""

    def __init__(
        self,
        redis_client: RedisClient,
        resource: str,
        ttl_seconds: int = 60,
        retry_interval: float = 0.05,
        max_retries: int = 200,
    ):
        self.redis = redis_client
        self.resource = resource
        self.ttl_seconds = ttl_seconds
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.token = uuid.uuid4().hex
        self._key = redis_client._key("locks", resource)

    async def acquire(self) -> bool:
        """Try to acquire the lock. Returns True if acquired."""
        result = await self.redis.client.set(self._key, self.token, nx=True, ex=self.ttl_seconds)
        return bool(result)

    async def release(self) -> None:
        await self.redis.client.eval(_LUA_RELEASE, 1, self._key, self.token)

    async def acquire_with_retry(self) -> bool:
        """Spin-wait until lock is acquired or max_retries exceeded."""
        for _ in range(self.max_retries):
            if await self.acquire():
                return True
            await asyncio.sleep(self.retry_interval)
        return False


class RedisLocks:
    """Cross-process locks built on DistributedLock."""

    def __init__(self, redis_client: RedisClient, ttl_seconds: int = 60, timeout_seconds: float = 10.0):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.retry_interval = 0.05
        self.max_retries = max(1, int(timeout_seconds / self.retry_interval))

    @asynccontextmanager
    async def hold(self, key: str):
        lock = DistributedLock(
            self.redis,
            key,
            ttl_seconds=self.ttl_seconds,
            retry_interval=self.retry_interval,
            max_retries=self.max_retries,
        )
        if not await lock.acquire_with_retry():
            raise LockTimeout(f"Could not acquire lock for {key}")
        try:
            yield
        finally:
            await lock.release()
