"""Tests for the Redis-backed distributed lock."""

import asyncio

import fakeredis.aioredis
import pytest

from saaskit.core.exceptions import LockNotAcquiredError
from saaskit.core.locking import DistributedLock

pytestmark = pytest.mark.unit


@pytest.fixture
async def lock():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield DistributedLock(client=client)
    await client.flushall()
    await client.aclose()


async def test_acquire_and_release(lock):
    assert await lock.acquire("job", owner="a") is True
    info = await lock.is_locked("job")
    assert info["owner"] == "a"
    assert info["expires_in"] > 0

    assert await lock.release("job", owner="a") is True
    assert await lock.is_locked("job") is None


async def test_second_owner_is_refused(lock):
    assert await lock.acquire("job", owner="a") is True
    assert await lock.acquire("job", owner="b") is False
    assert await lock.release("job", owner="b") is False


async def test_owner_reacquire_extends(lock):
    assert await lock.acquire("job", owner="a", ttl=5) is True
    assert await lock.acquire("job", owner="a", ttl=120) is True
    info = await lock.is_locked("job")
    assert info["expires_in"] > 5


async def test_context_manager_releases_on_error(lock):
    with pytest.raises(RuntimeError):
        async with lock.lock("job", owner="a"):
            raise RuntimeError("boom")
    assert await lock.is_locked("job") is None


async def test_context_manager_times_out(lock):
    await lock.acquire("job", owner="holder")
    with pytest.raises(LockNotAcquiredError) as exc_info:
        async with lock.lock("job", owner="waiter", wait_timeout=0.3, poll_interval=0.05):
            pass
    assert exc_info.value.status_code == 409


async def test_waiter_gets_lock_after_release(lock):
    await lock.acquire("job", owner="holder")

    async def release_soon():
        await asyncio.sleep(0.1)
        await lock.release("job", owner="holder")

    releaser = asyncio.create_task(release_soon())
    async with lock.lock("job", owner="waiter", wait_timeout=2, poll_interval=0.02):
        info = await lock.is_locked("job")
        assert info["owner"] == "waiter"
    await releaser
