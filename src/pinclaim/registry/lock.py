"""
Claim Lock Service.

Per-claim mutual exclusion around PIN verification, ledger release and
refund, so that at most one redemption (or sweep refund) is in flight for a
claim at any time. Locks expire after a TTL, so a crashed holder cannot
block a claim forever.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pinclaim.core.logging import get_logger

if TYPE_CHECKING:
    from pinclaim.core.config import Config
    from pinclaim.storage.base import StorageBackend

logger = get_logger("lock")


class ClaimLockService:
    """
    Expiring per-claim locks on the storage backend.

    Args:
        storage: Storage backend (Redis/Memory)
        ttl: Default lock lifetime in seconds
        retry_count: Default number of retries while the lock is held
        retry_delay: Default delay between retries
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = 60,
        retry_count: int = 3,
        retry_delay: float = 0.25,
    ) -> None:
        self._storage = storage
        self.ttl = ttl
        self.retry_count = retry_count
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, storage: StorageBackend, config: Config) -> ClaimLockService:
        return cls(
            storage,
            ttl=config.lock_ttl,
            retry_count=config.lock_retry_count,
            retry_delay=config.lock_retry_delay,
        )

    @staticmethod
    def _lock_key(claim_id: str) -> str:
        return f"lock:claim:{claim_id}"

    async def acquire(
        self,
        claim_id: str,
        ttl: int | None = None,
        retry_count: int | None = None,
        retry_delay: float | None = None,
    ) -> str | None:
        """
        Acquire the lock for a claim, polling while another holder has it.

        Returns:
            Ownership token, or None if the lock stayed busy
        """
        ttl = self.ttl if ttl is None else ttl
        retries = self.retry_count if retry_count is None else retry_count
        delay = self.retry_delay if retry_delay is None else retry_delay
        lock_key = self._lock_key(claim_id)

        for i in range(retries + 1):
            token = await self._storage.acquire_lock(lock_key, ttl)
            if token:
                return token
            if i < retries:
                await asyncio.sleep(delay)

        logger.info(f"Claim {claim_id} still busy after {retries} retries")
        return None

    async def release(self, claim_id: str, lock_token: str) -> bool:
        """
        Release a lock held with `lock_token`.

        Returns:
            False if the lock had already expired or passed to another holder
        """
        released = await self._storage.release_lock(self._lock_key(claim_id), lock_token)
        if not released:
            logger.warning(f"Lock for claim {claim_id} expired before it was released")
        return released

    @asynccontextmanager
    async def hold(
        self,
        claim_id: str,
        ttl: int | None = None,
        retry_count: int | None = None,
        retry_delay: float | None = None,
    ) -> AsyncIterator[str | None]:
        """
        Hold the claim lock for the duration of the block.

        Yields the token, or None if the lock could not be obtained; the
        block decides what a busy claim means.
        """
        token = await self.acquire(claim_id, ttl=ttl, retry_count=retry_count, retry_delay=retry_delay)
        try:
            yield token
        finally:
            if token is not None:
                await self.release(claim_id, token)
