"""
Redis Storage Backend.

Durable storage backend using Redis for balances, blocks and history.
Requires the redis package.
"""

from __future__ import annotations

import json
import os
from typing import Any

import redis.asyncio as redis

from custodyledger.storage.base import StorageBackend, register_storage_backend


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Documents are stored as JSON strings; counters use INCRBY so that
    increments are atomic on the server.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "custodyledger",
        client: Any = None,
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from CUSTODYLEDGER_REDIS_URL env)
            prefix: Key prefix for all storage keys
            client: Optional pre-built ``redis.asyncio`` client
        """
        self._redis_url = redis_url or os.environ.get(
            "CUSTODYLEDGER_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client = client

    def _get_client(self):
        """Lazy-create the Redis client."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    def _counter_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:_counter:{key}"

    def _counter_index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_counters"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """Save data to Redis."""
        client = self._get_client()
        await client.set(self._make_key(collection, key), json.dumps(data))
        await client.sadd(self._index_key(collection), key)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """Get data from Redis."""
        client = self._get_client()
        data = await client.get(self._make_key(collection, key))
        if data is None:
            return None
        return json.loads(data)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """Delete data from Redis."""
        client = self._get_client()
        result = await client.delete(self._make_key(collection, key))
        await client.srem(self._index_key(collection), key)
        return result > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Query data with optional filters."""
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))

        results = []
        for key in keys:
            data = await self.get(collection, key)
            if data is None:
                continue
            if filters and any(data.get(k) != v for k, v in filters.items()):
                continue

            data["_key"] = key
            results.append(data)

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
        existing = await self.get(collection, key)
        if existing is None:
            return False

        existing.update(data)
        await self.save(collection, key, existing)
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

        client = self._get_client()
        return await client.scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        """Clear all records and counters from a collection."""
        client = self._get_client()

        keys = await client.smembers(self._index_key(collection))
        counter_keys = await client.smembers(self._counter_index_key(collection))

        for key in keys:
            await self.delete(collection, key)
        for key in counter_keys:
            await self.delete_counter(collection, key)

        return len(keys) + len(counter_keys)

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: int,
    ) -> int:
        """Atomically add amount (INCRBY)."""
        client = self._get_client()
        new_val = await client.incrby(self._counter_key(collection, key), int(amount))
        await client.sadd(self._counter_index_key(collection), key)
        return int(new_val)

    async def get_counter(self, collection: str, key: str) -> int:
        client = self._get_client()
        value = await client.get(self._counter_key(collection, key))
        return int(value) if value is not None else 0

    async def delete_counter(self, collection: str, key: str) -> bool:
        client = self._get_client()
        result = await client.delete(self._counter_key(collection, key))
        await client.srem(self._counter_index_key(collection), key)
        return result > 0

    async def list_counters(self, collection: str) -> dict[str, int]:
        client = self._get_client()
        keys = await client.smembers(self._counter_index_key(collection))
        counters = {}
        for key in keys:
            value = await client.get(self._counter_key(collection, key))
            if value is not None:
                counters[key] = int(value)
        return counters

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            client = self._get_client()
            await client.ping()
            return True
        except redis.RedisError:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
