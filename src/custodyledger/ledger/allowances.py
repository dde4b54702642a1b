"""Allowance store for delegated (ICRC-2) transfers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from custodyledger.core.types import Account, Timestamp

if TYPE_CHECKING:
    from custodyledger.storage.base import StorageBackend


@dataclass(frozen=True)
class Allowance:
    """Amount a spender may move out of an owner's account."""

    allowance: int = 0
    expires_at: Timestamp | None = None

    def is_expired(self, now: Timestamp) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {"allowance": str(self.allowance), "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Allowance:
        return cls(
            allowance=int(data.get("allowance", "0")),
            expires_at=data.get("expires_at"),
        )


class AllowanceStore:
    """
    (owner, spender) -> Allowance.

    A zero allowance is stored as absence.
    """

    COLLECTION = "allowances"

    def __init__(self, storage: StorageBackend, collection: str | None = None) -> None:
        self._storage = storage
        self._collection = collection or self.COLLECTION

    @staticmethod
    def _key(owner: Account, spender: Account) -> str:
        return f"{owner.key}|{spender.key}"

    async def get(self, owner: Account, spender: Account, now: Timestamp | None = None) -> Allowance:
        """
        Current allowance; zero when absent.

        When ``now`` is given an expired allowance reads as zero.
        """
        data = await self._storage.get(self._collection, self._key(owner, spender))
        if not data:
            return Allowance()
        allowance = Allowance.from_dict(data)
        if now is not None and allowance.is_expired(now):
            return Allowance()
        return allowance

    async def put(self, owner: Account, spender: Account, allowance: Allowance) -> None:
        """Overwrite the allowance, pruning it when zero."""
        key = self._key(owner, spender)
        if allowance.allowance == 0:
            await self._storage.delete(self._collection, key)
            return
        data = allowance.to_dict()
        data["owner"] = owner.key
        data["spender"] = spender.key
        await self._storage.save(self._collection, key, data)
