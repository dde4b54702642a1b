"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development and testing, but state is lost when the process ends.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from custodyledger.storage.base import StorageBackend, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores documents and counters in Python dicts. None of the methods
    await, so each call completes without yielding to the event loop.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._counters: dict[str, dict[str, int]] = {}

    def _ensure_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        """Ensure collection exists and return it."""
        if collection not in self._data:
            self._data[collection] = {}
        return self._data[collection]

    def _ensure_counters(self, collection: str) -> dict[str, int]:
        if collection not in self._counters:
            self._counters[collection] = {}
        return self._counters[collection]

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """Save data to memory."""
        coll = self._ensure_collection(collection)
        coll[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from memory."""
        coll = self._ensure_collection(collection)
        data = coll.get(key)
        return deepcopy(data) if data is not None else None

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """Delete data from memory."""
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
        coll = self._ensure_collection(collection)

        results = []
        for key, data in coll.items():
            if filters and any(data.get(k) != v for k, v in filters.items()):
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
        coll = self._ensure_collection(collection)
        if key not in coll:
            return False

        coll[key].update(deepcopy(data))
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        if filters:
            results = await self.query(collection, filters)
            return len(results)

        return len(self._ensure_collection(collection))

    async def clear(self, collection: str) -> int:
        """Clear all records and counters from a collection."""
        coll = self._ensure_collection(collection)
        counters = self._ensure_counters(collection)
        count = len(coll) + len(counters)
        coll.clear()
        counters.clear()
        return count

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: int,
    ) -> int:
        """Atomically add amount."""
        counters = self._ensure_counters(collection)
        new_val = counters.get(key, 0) + int(amount)
        counters[key] = new_val
        return new_val

    async def get_counter(self, collection: str, key: str) -> int:
        return self._ensure_counters(collection).get(key, 0)

    async def delete_counter(self, collection: str, key: str) -> bool:
        counters = self._ensure_counters(collection)
        return counters.pop(key, None) is not None

    async def list_counters(self, collection: str) -> dict[str, int]:
        return dict(self._ensure_counters(collection))

    async def health_check(self) -> bool:
        """Always healthy for in-memory."""
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
