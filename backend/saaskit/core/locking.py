"""Distributed locking on Redis.

Serializes billing work that must not interleave across workers:
- Stripe customer creation for a single user
- Catalog sync runs
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis

from saaskit.core.exceptions import LockNotAcquiredError
from saaskit.db.redis import get_redis


class DistributedLock:
    """Manages named, owner-tagged locks using Redis SET NX with a TTL."""

    LOCK_PREFIX = "saaskit:lock:"
    DEFAULT_TTL = 60

    def __init__(self, client: redis.Redis | None = None):
        self._client = client

    async def _get_redis(self) -> redis.Redis:
        return self._client if self._client is not None else get_redis()

    def _lock_key(self, name: str) -> str:
        return f"{self.LOCK_PREFIX}{name}"

    async def acquire(self, name: str, owner: str, ttl: int | None = None) -> bool:
        """Attempt to acquire a lock.

        Returns:
            True if acquired (or already held by owner), False if held by someone else
        """
        r = await self._get_redis()
        key = self._lock_key(name)
        ttl = ttl or self.DEFAULT_TTL

        lock_value = f"{owner}|{datetime.now(UTC).isoformat()}"
        if await r.set(key, lock_value, nx=True, ex=ttl):
            return True

        current = await r.get(key)
        if current and current.startswith(f"{owner}|"):
            await r.expire(key, ttl)
            return True

        return False

    async def release(self, name: str, owner: str) -> bool:
        """Release a lock. Returns False if it is not owned by owner."""
        r = await self._get_redis()
        key = self._lock_key(name)

        current = await r.get(key)
        if current and current.startswith(f"{owner}|"):
            await r.delete(key)
            return True

        return False

    async def is_locked(self, name: str) -> dict | None:
        r = await self._get_redis()
        key = self._lock_key(name)

        current = await r.get(key)
        if not current:
            return None

        owner, _, locked_at = current.partition("|")
        return {
            "name": name,
            "owner": owner,
            "locked_at": locked_at or None,
            "expires_in": await r.ttl(key),
        }

    @asynccontextmanager
    async def lock(
        self,
        name: str,
        owner: str,
        ttl: int | None = None,
        wait_timeout: float = 10,
        poll_interval: float = 0.2,
    ) -> AsyncGenerator[None, None]:
        """Hold a lock for the duration of the block, waiting up to wait_timeout.

        Raises:
            LockNotAcquiredError: If the lock is still held elsewhere after wait_timeout

        Example:
            async with get_lock().lock(f"stripe-customer:{user_id}", owner=request_id):
                ...
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_timeout
        acquired = await self.acquire(name, owner, ttl)
        while not acquired and loop.time() < deadline:
            await asyncio.sleep(poll_interval)
            acquired = await self.acquire(name, owner, ttl)

        if not acquired:
            raise LockNotAcquiredError(name)

        try:
            yield
        finally:
            await self.release(name, owner)


# Singleton instance
_lock: DistributedLock | None = None


def get_lock() -> DistributedLock:
    """Get the singleton DistributedLock instance."""
    global _lock
    if _lock is None:
        _lock = DistributedLock()
    return _lock
