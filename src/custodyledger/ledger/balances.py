"""
Balance store shared by the token ledger and the custodial wallet.

Each owner gets its own collection (keyspace) in the storage backend. An
absent key has balance zero and zero balances are pruned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from custodyledger.core.exceptions import OverdraftError
from custodyledger.core.types import require_non_negative

if TYPE_CHECKING:
    from custodyledger.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class BalanceStore:
    """
    Mapping from key to non-negative integer amount.

    ``credit`` is a single atomic counter increment. ``debit`` is a
    check-then-decrement held under a per-store lock, so a decrement that
    would go negative is refused before anything is written.
    """

    def __init__(self, storage: StorageBackend, collection: str) -> None:
        """
        Initialize balance store.

        Args:
            storage: Storage backend holding the counters
            collection: Keyspace for this store
        """
        self._storage = storage
        self._collection = collection
        self._lock = asyncio.Lock()

    @property
    def collection(self) -> str:
        return self._collection

    async def get(self, key: str) -> int:
        """Balance for key; zero when absent."""
        return await self._storage.get_counter(self._collection, key)

    async def credit(self, key: str, amount: int) -> int:
        """Add amount to key. Returns the new balance."""
        require_non_negative(amount)
        if amount == 0:
            return await self.get(key)
        return await self._storage.atomic_add(self._collection, key, amount)

    async def debit(self, key: str, amount: int) -> int:
        """
        Subtract amount from key.

        Raises:
            OverdraftError: If the balance is smaller than amount. Nothing
                is written in that case.
        """
        require_non_negative(amount)
        async with self._lock:
            balance = await self.get(key)
            if balance < amount:
                raise OverdraftError(
                    "Decrement would overdraw balance",
                    key=key,
                    balance=balance,
                    requested=amount,
                )
            if amount == 0:
                return balance

            new_balance = await self._storage.atomic_add(self._collection, key, -amount)
            if new_balance == 0:
                await self._storage.delete_counter(self._collection, key)
            return new_balance

    async def items(self) -> dict[str, int]:
        """Every non-zero balance in the store."""
        counters = await self._storage.list_counters(self._collection)
        return {k: v for k, v in counters.items() if v != 0}

    async def total(self) -> int:
        """Sum of all balances."""
        return sum((await self.items()).values())
