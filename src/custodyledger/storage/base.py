"""
Abstract Storage Backend for CustodyLedger.

Durable key-value layer for balances, allowances, blocks and transaction
history. Holds two kinds of values per collection: JSON documents and
integer counters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Provides simple CRUD operations for documents plus atomic integer
    counters. Implementations can use any persistence layer (memory, Redis, etc.)
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save a document.

        Args:
            collection: Collection name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get a document.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete a document.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query documents with optional exact-match filters.

        Each result carries its key under ``_key``. Order is unspecified.
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Merge fields into an existing document.

        Returns:
            True if updated, False if not found
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count documents in a collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all documents and counters from a collection.

        Returns:
            Number of entries deleted
        """
        ...

    @abstractmethod
    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: int,
    ) -> int:
        """
        Atomically add ``amount`` (may be negative) to the counter at key.

        Absent counters start at zero.

        Returns:
            New counter value
        """
        ...

    @abstractmethod
    async def get_counter(self, collection: str, key: str) -> int:
        """Read a counter; absent counters read as zero."""
        ...

    @abstractmethod
    async def delete_counter(self, collection: str, key: str) -> bool:
        """Remove a counter. Returns True if it existed."""
        ...

    @abstractmethod
    async def list_counters(self, collection: str) -> dict[str, int]:
        """Return every counter in a collection."""
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
