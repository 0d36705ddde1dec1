"""Tests for ClaimLockService."""

import asyncio

import pytest

from pinclaim.core.config import Config
from pinclaim.registry.lock import ClaimLockService
from pinclaim.storage.memory import InMemoryStorage


@pytest.fixture
def memory_storage():
    """Provides memory storage."""
    return InMemoryStorage()


@pytest.fixture
def lock_service(memory_storage):
    """Provides lock service."""
    return ClaimLockService(memory_storage)


@pytest.mark.asyncio
async def test_acquire_and_release_lock(lock_service):
    """Test basic lock acquire and release."""
    lock_token = await lock_service.acquire("claim-1")
    assert lock_token is not None
    assert isinstance(lock_token, str)

    # Second acquire retries, then gives up
    lock_token_2 = await lock_service.acquire("claim-1", retry_count=1, retry_delay=0.05)
    assert lock_token_2 is None

    released = await lock_service.release("claim-1", lock_token)
    assert released is True

    lock_token_3 = await lock_service.acquire("claim-1")
    assert lock_token_3 is not None
    await lock_service.release("claim-1", lock_token_3)


@pytest.mark.asyncio
async def test_locks_are_per_claim(lock_service):
    token_a = await lock_service.acquire("claim-a", retry_count=0)
    token_b = await lock_service.acquire("claim-b", retry_count=0)

    assert token_a is not None
    assert token_b is not None


@pytest.mark.asyncio
async def test_lock_ttl(memory_storage):
    """Test that locks expire after TTL."""
    service = ClaimLockService(memory_storage)

    lock_token = await service.acquire("claim-2", ttl=1)
    assert lock_token is not None

    assert await service.acquire("claim-2", retry_count=0) is None

    await asyncio.sleep(1.1)

    lock_token_3 = await service.acquire("claim-2", retry_count=0)
    assert lock_token_3 is not None
    await service.release("claim-2", lock_token_3)


@pytest.mark.asyncio
async def test_retry_mechanism(lock_service):
    """Test that retry mechanism waits and acquires if lock is freed."""
    lock_token = await lock_service.acquire("claim-3")

    async def delayed_release():
        await asyncio.sleep(0.2)
        await lock_service.release("claim-3", lock_token)

    task = asyncio.create_task(delayed_release())

    lock_token_2 = await lock_service.acquire("claim-3", retry_count=10, retry_delay=0.1)
    assert lock_token_2 is not None

    await task
    await lock_service.release("claim-3", lock_token_2)


@pytest.mark.asyncio
async def test_token_ownership(lock_service):
    """Test that a lock cannot be released with a wrong token."""
    lock_token = await lock_service.acquire("claim-4")

    assert await lock_service.release("claim-4", "wrong-token") is False
    assert await lock_service.acquire("claim-4", retry_count=0) is None
    assert await lock_service.release("claim-4", lock_token) is True


@pytest.mark.asyncio
async def test_hold_releases_on_exit(lock_service):
    async with lock_service.hold("claim-5") as token:
        assert token is not None
        assert await lock_service.acquire("claim-5", retry_count=0) is None

    token_2 = await lock_service.acquire("claim-5", retry_count=0)
    assert token_2 is not None
    await lock_service.release("claim-5", token_2)


@pytest.mark.asyncio
async def test_hold_releases_when_block_raises(lock_service):
    with pytest.raises(RuntimeError):
        async with lock_service.hold("claim-6"):
            raise RuntimeError("boom")

    assert await lock_service.acquire("claim-6", retry_count=0) is not None


@pytest.mark.asyncio
async def test_hold_yields_none_when_busy(lock_service):
    token = await lock_service.acquire("claim-7")

    async with lock_service.hold("claim-7", retry_count=0) as second:
        assert second is None

    # The busy block must not free the holder's lock
    assert await lock_service.release("claim-7", token) is True


def test_from_config(memory_storage):
    config = Config(lock_ttl=150, lock_retry_count=4, lock_retry_delay=0.5)

    service = ClaimLockService.from_config(memory_storage, config)

    assert service.ttl == 150
    assert service.retry_count == 4
    assert service.retry_delay == 0.5
