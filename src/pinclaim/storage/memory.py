"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development and testing; records are lost on restart.
"""

from __future__ import annotations

import threading
import time
import uuid
from copy import deepcopy
from decimal import Decimal, InvalidOperation
from typing import Any

from pinclaim.storage.base import StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Every operation runs under one
    re-entrant lock, so compare-and-update and lock acquisition are atomic
    across threads as well as coroutines.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._locks: dict[str, tuple[str, float]] = {}
        self._mutex = threading.RLock()

    def _ensure_collection(self, collection: str) -> dict[str, Any]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    @staticmethod
    def _matches(data: dict[str, Any], filters: dict[str, Any]) -> bool:
        return all(data.get(k) == v for k, v in filters.items())

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """Save data to memory."""
        with self._mutex:
            self._ensure_collection(collection)[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from memory."""
        with self._mutex:
            data = self._ensure_collection(collection).get(key)
            return deepcopy(data) if data is not None else None

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """Delete data from memory."""
        with self._mutex:
            coll = self._ensure_collection(collection)
            if key in coll:
                del coll[key]
                return True
            return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        with self._mutex:
            results = []
            for key, data in self._ensure_collection(collection).items():
                if not isinstance(data, dict):
                    continue
                if filters and not self._matches(data, filters):
                    continue
                result = deepcopy(data)
                result["_key"] = key
                results.append(result)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]
        return results

    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """Update existing data."""
        with self._mutex:
            coll = self._ensure_collection(collection)
            if key not in coll:
                return False
            coll[key].update(deepcopy(data))
            return True

    async def compare_and_update(
        self,
        collection: str,
        key: str,
        expected: dict[str, Any],
        updates: dict[str, Any],
    ) -> bool:
        """Atomically update if all expected fields match."""
        with self._mutex:
            current = self._ensure_collection(collection).get(key)
            if not isinstance(current, dict) or not self._matches(current, expected):
                return False
            current.update(deepcopy(updates))
            return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        if filters:
            return len(await self.query(collection, filters))
        with self._mutex:
            return len(self._ensure_collection(collection))

    async def clear(self, collection: str) -> int:
        """Clear all records from a collection."""
        with self._mutex:
            coll = self._ensure_collection(collection)
            count = len(coll)
            coll.clear()
            return count

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """Atomically add amount."""
        with self._mutex:
            coll = self._ensure_collection(collection)
            current_val = coll.get(key)
            try:
                current = Decimal(str(current_val)) if current_val is not None else Decimal("0")
            except InvalidOperation:
                current = Decimal("0")
            new_val = current + Decimal(amount)
            # Stored as string to match Redis behavior
            coll[key] = str(new_val)
            return str(new_val)

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """Acquire an expiring lock, returning an ownership token."""
        with self._mutex:
            now = time.monotonic()
            held = self._locks.get(key)
            if held is not None and now < held[1]:
                return None
            token = str(uuid.uuid4())
            self._locks[key] = (token, now + ttl)
            return token

    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """Release lock if `token` still owns it."""
        with self._mutex:
            held = self._locks.get(key)
            if held is None or held[0] != token:
                return False
            del self._locks[key]
            return True

    async def health_check(self) -> bool:
        """Always healthy for in-memory."""
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
