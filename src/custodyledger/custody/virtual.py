"""
Virtual balances and withdrawal holds.

Virtual balances are the custodial wallet's own per-user accounting. A hold
reserves part of a balance while a withdrawal waits on the ledger, so other
operations only ever see the unheld remainder.

Holds are durable but expire: a hold older than ``hold_ttl_ns`` no longer
counts, so a process that dies mid-withdrawal cannot lock a balance forever.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from custodyledger.core.errors import InsufficientFunds
from custodyledger.core.types import Timestamp, now_ns
from custodyledger.ledger.balances import BalanceStore

if TYPE_CHECKING:
    from custodyledger.storage.base import StorageBackend

logger = logging.getLogger(__name__)

# Transaction window (24h) plus permitted clock drift (60s)
DEFAULT_HOLD_TTL_NS = (24 * 60 * 60 + 60) * 1_000_000_000


class VirtualBalances:
    """
    Per-user virtual balance store owned by the custodial wallet.

    Every check-and-mutate sequence runs under ``_commit_lock`` so it is one
    step with respect to the other operations of the wallet.
    """

    BALANCES = "custody_virtual_balances"
    HOLDS = "custody_holds"
    USERS = "custody_users"

    def __init__(
        self,
        storage: StorageBackend,
        clock: Callable[[], Timestamp] = now_ns,
        hold_ttl_ns: int = DEFAULT_HOLD_TTL_NS,
    ) -> None:
        """
        Initialize virtual balances.

        Args:
            storage: Storage backend
            clock: Source of hold timestamps in nanoseconds
            hold_ttl_ns: Age after which a hold stops counting
        """
        self._storage = storage
        self._clock = clock
        self._hold_ttl_ns = hold_ttl_ns
        self._balances = BalanceStore(storage, self.BALANCES)
        self._commit_lock = asyncio.Lock()

    async def balance(self, user: str) -> int:
        """Full virtual balance, including held funds."""
        return await self._balances.get(user)

    async def held(self, user: str) -> int:
        """Total currently held for pending withdrawals."""
        return sum(int(h["amount"]) for h in await self._live_holds(user))

    async def available(self, user: str) -> int:
        """Balance not covered by a hold."""
        return await self.balance(user) - await self.held(user)

    async def credit(self, user: str, amount: int) -> int:
        async with self._commit_lock:
            return await self._balances.credit(user, amount)

    async def place_hold(self, user: str, amount: int) -> tuple[str | None, InsufficientFunds | None]:
        """
        Reserve ``amount`` of the user's available balance.

        Returns:
            (hold_id, None) on success, (None, InsufficientFunds) otherwise
        """
        async with self._commit_lock:
            available = await self.available(user)
            if available < amount:
                return None, InsufficientFunds(balance=available)

            hold_id = str(uuid.uuid4())
            await self._storage.save(
                self.HOLDS,
                hold_id,
                {
                    "user": user,
                    "amount": str(amount),
                    "created_at_ns": self._clock(),
                    "created_at": datetime.now().isoformat(),
                },
            )
        logger.debug(f"Held {amount} of {user}'s virtual balance (hold {hold_id})")
        return hold_id, None

    async def release_hold(self, hold_id: str) -> bool:
        """Drop a hold. Releasing an unknown or already released hold is a no-op."""
        async with self._commit_lock:
            return await self._storage.delete(self.HOLDS, hold_id)

    async def commit_hold(self, hold_id: str, user: str, amount: int) -> InsufficientFunds | None:
        """
        Debit a held amount and drop the hold.

        The balance is re-validated here: the user's balance minus every other
        live hold must still cover ``amount``.

        Returns:
            None on success, InsufficientFunds if re-validation fails (nothing
            is written in that case)
        """
        async with self._commit_lock:
            others = sum(
                int(h["amount"]) for h in await self._live_holds(user) if h["_key"] != hold_id
            )
            available = await self.balance(user) - others
            if available < amount:
                return InsufficientFunds(balance=available)

            await self._balances.debit(user, amount)
            await self._storage.delete(self.HOLDS, hold_id)
        return None

    async def reap_expired_holds(self) -> int:
        """
        Delete every expired hold.

        Returns:
            Number of holds removed
        """
        removed = 0
        async with self._commit_lock:
            for hold in await self._storage.query(self.HOLDS):
                if self._expired(hold) and await self._storage.delete(self.HOLDS, hold["_key"]):
                    removed += 1
        if removed:
            logger.warning(f"Reaped {removed} expired withdrawal hold(s)")
        return removed

    async def transfer(self, sender: str, recipient: str, amount: int) -> InsufficientFunds | None:
        """
        Move ``amount`` from sender to recipient in one step.

        Returns:
            None on success, InsufficientFunds if the sender's available
            balance is too small
        """
        async with self._commit_lock:
            available = await self.available(sender)
            if available < amount:
                return InsufficientFunds(balance=available)

            await self._balances.debit(sender, amount)
            await self._balances.credit(recipient, amount)
        return None

    async def register_user(self, user: str) -> None:
        """Remember that ``user`` owns a custody subaccount."""
        if await self._storage.get(self.USERS, user) is None:
            await self._storage.save(self.USERS, user, {"since": datetime.now().isoformat()})

    async def users(self) -> list[str]:
        """Every user that ever deposited to custody."""
        return [u["_key"] for u in await self._storage.query(self.USERS)]

    async def items(self) -> dict[str, int]:
        return await self._balances.items()

    async def total(self) -> int:
        """Sum of all virtual balances."""
        return await self._balances.total()

    async def _live_holds(self, user: str) -> list[dict[str, Any]]:
        holds = await self._storage.query(self.HOLDS, filters={"user": user})
        return [h for h in holds if not self._expired(h)]

    def _expired(self, hold: dict[str, Any]) -> bool:
        created = hold.get("created_at_ns")
        if created is None:
            return False
        return int(created) + self._hold_ttl_ns < self._clock()
