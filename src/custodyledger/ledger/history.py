"""
Transaction history.

Append-only log of operation attempts. A record is immutable once written
except for one status transition from PENDING to CONFIRMED or FAILED.

Records are listed in completion order: a record takes a place in the order
index when it is written and moves to the front when it settles, so an
operation that finishes last is listed first whenever it started.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from custodyledger.core.exceptions import ValidationError
from custodyledger.core.types import TransactionKind, TransactionStatus

if TYPE_CHECKING:
    from custodyledger.storage.base import StorageBackend


@dataclass
class TransactionRecord:
    """
    A single history entry.

    Attributes:
        id: Ascending record ID, assigned by the log
        kind: Operation kind (send, deposit, withdraw, ...)
        amount: On-ledger amount, if any
        virtual_amount: Virtual-balance amount, if any
        from_id: Source identity or account
        to_id: Destination identity, account or address
        block_index: Ledger (or bridge) block reference
        timestamp: Wall-clock time of creation
        status: Current status
        token: Token symbol
        error: Rendered error for failed records
        position: Place in completion order, reassigned when the record settles
    """

    kind: TransactionKind
    id: int = 0
    amount: int | None = None
    virtual_amount: int | None = None
    from_id: str = ""
    to_id: str = ""
    block_index: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    status: TransactionStatus = TransactionStatus.PENDING
    token: str = "ckTestBTC"
    error: str | None = None
    position: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "amount": str(self.amount) if self.amount is not None else None,
            "virtual_amount": str(self.virtual_amount) if self.virtual_amount is not None else None,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "block_index": self.block_index,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "token": self.token,
            "error": self.error,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransactionRecord:
        """Create TransactionRecord from dictionary."""
        amount = data.get("amount")
        virtual_amount = data.get("virtual_amount")
        return cls(
            id=int(data["id"]),
            kind=TransactionKind(data["kind"]),
            amount=int(amount) if amount is not None else None,
            virtual_amount=int(virtual_amount) if virtual_amount is not None else None,
            from_id=data.get("from_id", ""),
            to_id=data.get("to_id", ""),
            block_index=data.get("block_index"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=TransactionStatus(data.get("status", TransactionStatus.PENDING.value)),
            token=data.get("token", "ckTestBTC"),
            error=data.get("error"),
            position=int(data.get("position", 0)),
        )


class TransactionLog:
    """
    Transaction history backed by a StorageBackend collection.

    IDs come from a durable counter, so they keep ascending across restarts.
    A second collection, ``<collection>_order``, maps completion positions to
    record IDs so the newest records can be read without a full scan.
    """

    def __init__(self, storage: StorageBackend, collection: str = "transactions") -> None:
        """
        Initialize the log.

        Args:
            storage: Storage backend
            collection: Collection holding this log's records
        """
        self._storage = storage
        self._collection = collection
        self._order = f"{collection}_order"

    async def record(self, record: TransactionRecord) -> TransactionRecord:
        """
        Append a record, assigning its ID and its place in completion order.

        Returns:
            The stored record
        """
        record.id = await self._storage.atomic_add(self._collection, "_sequence", 1)
        record.position = await self._place(record.id)
        await self._storage.save(self._collection, str(record.id), record.to_dict())
        return record

    async def get(self, record_id: int) -> TransactionRecord | None:
        data = await self._storage.get(self._collection, str(record_id))
        if not data:
            return None
        return TransactionRecord.from_dict(data)

    async def update_status(
        self,
        record_id: int,
        status: TransactionStatus,
        block_index: int | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Move a PENDING record to a terminal status.

        The record moves to the front of the completion order.

        Returns:
            True if updated, False if not found

        Raises:
            ValidationError: If the record is not PENDING or ``status`` is PENDING
        """
        data = await self._storage.get(self._collection, str(record_id))
        if not data:
            return False

        current = TransactionStatus(data["status"])
        if current.is_terminal() or not status.is_terminal():
            raise ValidationError(
                f"Illegal status transition {current.value} -> {status.value}",
                details={"record_id": record_id},
            )

        updates: dict[str, Any] = {"status": status.value}
        if block_index is not None:
            updates["block_index"] = block_index
        if error is not None:
            updates["error"] = error
        updates["position"] = await self._place(record_id)

        updated = await self._storage.update(self._collection, str(record_id), updates)
        previous = data.get("position")
        if previous:
            await self._storage.delete(self._order, str(previous))
        return updated

    async def recent(self, limit: int = 100) -> list[TransactionRecord]:
        """
        Most recent records in completion order, newest first.

        Walks the order index down from its top, so only about ``limit``
        records are read.
        """
        position = await self._storage.get_counter(self._order, "_position")
        records: list[TransactionRecord] = []
        seen: set[int] = set()
        while position > 0 and len(records) < limit:
            entry = await self._storage.get(self._order, str(position))
            position -= 1
            # Moved records leave a gap behind
            if entry is None or int(entry["id"]) in seen:
                continue
            record = await self.get(int(entry["id"]))
            if record is not None:
                seen.add(record.id)
                records.append(record)
        return records

    async def query(
        self,
        kind: TransactionKind | None = None,
        status: TransactionStatus | None = None,
        party: str | None = None,
        limit: int = 100,
    ) -> list[TransactionRecord]:
        """
        Filtered history in completion order, newest first.

        Args:
            kind: Filter by kind
            status: Filter by status
            party: Keep records where this identity is sender or recipient
            limit: Maximum records to return
        """
        filters = {}
        if kind:
            filters["kind"] = kind.value
        if status:
            filters["status"] = status.value

        raw_results = await self._storage.query(self._collection, filters=filters)
        records = [TransactionRecord.from_dict(d) for d in raw_results]
        if party:
            records = [r for r in records if party in (r.from_id, r.to_id)]

        records.sort(key=lambda r: (r.position, r.id), reverse=True)
        return records[:limit]

    async def count(self) -> int:
        return await self._storage.count(self._collection)

    async def _place(self, record_id: int) -> int:
        position = await self._storage.atomic_add(self._order, "_position", 1)
        await self._storage.save(self._order, str(position), {"id": record_id})
        return position
