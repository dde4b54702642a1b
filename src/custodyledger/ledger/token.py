"""
TokenLedger - ICRC-1/ICRC-2 style fungible token ledger.

Implements direct transfers, approvals, delegated transfers and privileged
minting over a BalanceStore and an AllowanceStore. Every state-changing call
gets the next block index. Fees are burned: they leave the payer, are
credited to nobody and are subtracted from the total supply.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from custodyledger.core.config import Config
from custodyledger.core.crypto import sha256
from custodyledger.core.errors import (
    ERROR_INVALID_ARGUMENT,
    ERROR_UNAUTHORIZED,
    AllowanceChanged,
    BadFee,
    CreatedInFuture,
    Duplicate,
    Expired,
    GenericError,
    InsufficientAllowance,
    InsufficientFunds,
    LedgerError,
    TooOld,
)
from custodyledger.core.exceptions import ValidationError
from custodyledger.core.logging import get_logger
from custodyledger.core.types import (
    Account,
    BlockKind,
    Result,
    Timestamp,
    now_ns,
    require_non_negative,
)
from custodyledger.ledger.allowances import Allowance, AllowanceStore
from custodyledger.ledger.balances import BalanceStore

if TYPE_CHECKING:
    from custodyledger.storage.base import StorageBackend

MAX_MEMO_LENGTH = 32


class TokenLedger:
    """
    Authoritative token ledger.

    All mutating operations run under one write lock, so the checks, the
    balance updates and the block assignment of a call are never interleaved
    with another call, whatever the storage backend. Reads take the same
    lock and never see a call half applied.

    The lock orders calls within one process only. A mutation is several
    storage writes, so a process that dies in the middle of one can leave
    it partly applied; the block log is written last, so such a call has
    no block.
    """

    BALANCES = "ledger_balances"
    ALLOWANCES = "ledger_allowances"
    BLOCKS = "ledger_blocks"
    META = "ledger_meta"
    DEDUP = "ledger_dedup"

    def __init__(
        self,
        storage: StorageBackend,
        config: Config | None = None,
        clock: Callable[[], Timestamp] = now_ns,
    ) -> None:
        """
        Initialize the ledger.

        Args:
            storage: Durable storage backend
            config: Protocol configuration (fee, minters, replay window)
            clock: Source of ledger time in nanoseconds
        """
        self._storage = storage
        self._config = config or Config()
        self._clock = clock
        self._balances = BalanceStore(storage, self.BALANCES)
        self._allowances = AllowanceStore(storage, self.ALLOWANCES)
        self._write_lock = asyncio.Lock()
        self._last_prune: Timestamp | None = None
        self._logger = get_logger("ledger")

    # ==================== Metadata ====================

    @property
    def name(self) -> str:
        return self._config.token_name

    @property
    def symbol(self) -> str:
        return self._config.token_symbol

    @property
    def decimals(self) -> int:
        return self._config.decimals

    @property
    def fee(self) -> int:
        return self._config.transfer_fee

    @property
    def minting_account(self) -> Account:
        return Account(self._config.minting_account)

    def metadata(self) -> list[tuple[str, Any]]:
        return [
            ("icrc1:name", self.name),
            ("icrc1:symbol", self.symbol),
            ("icrc1:decimals", self.decimals),
            ("icrc1:fee", self.fee),
        ]

    def supported_standards(self) -> list[dict[str, str]]:
        return [
            {"name": "ICRC-1", "url": "https://github.com/dfinity/ICRC-1"},
            {
                "name": "ICRC-2",
                "url": "https://github.com/dfinity/ICRC-1/tree/main/standards/ICRC-2",
            },
        ]

    async def total_supply(self) -> int:
        """Minted minus burned."""
        async with self._write_lock:
            minted = await self._storage.get_counter(self.META, "minted")
            burned = await self._storage.get_counter(self.META, "burned")
        return minted - burned

    async def total_burned(self) -> int:
        async with self._write_lock:
            return await self._storage.get_counter(self.META, "burned")

    async def block_height(self) -> int:
        """Number of blocks; also the index the next block will get."""
        async with self._write_lock:
            return await self._storage.get_counter(self.META, "block_height")

    # ==================== Reads ====================

    async def balance_of(self, account: Account) -> int:
        """Balance of account; unknown accounts have zero."""
        async with self._write_lock:
            return await self._balances.get(account.key)

    async def allowance(self, owner: Account, spender: Account) -> Allowance:
        """Current allowance; expired allowances read as zero."""
        async with self._write_lock:
            return await self._allowances.get(owner, spender, now=self._clock())

    async def get_block(self, index: int) -> dict[str, Any] | None:
        async with self._write_lock:
            return await self._storage.get(self.BLOCKS, str(index))

    async def get_blocks(self, start: int, length: int) -> list[dict[str, Any]]:
        """Blocks in ``[start, start + length)`` that exist, in index order."""
        async with self._write_lock:
            height = await self._storage.get_counter(self.META, "block_height")
            blocks = []
            for index in range(max(start, 0), min(start + length, height)):
                block = await self._storage.get(self.BLOCKS, str(index))
                if block is not None:
                    blocks.append(block)
        return blocks

    # ==================== Mutations ====================

    async def transfer(
        self,
        caller: str,
        to: Account,
        amount: int,
        fee: int | None = None,
        memo: bytes | None = None,
        from_subaccount: bytes | None = None,
        created_at_time: Timestamp | None = None,
    ) -> Result[int]:
        """
        Move ``amount`` from the caller's account to ``to``, burning the fee.

        Returns:
            Result with the block index, or a TransferError variant
        """
        try:
            require_non_negative(amount)
            from_account = Account(caller, from_subaccount)
            self._check_memo(memo)
        except ValidationError as e:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, e.message))

        async with self._write_lock:
            now = self._clock()
            effective_fee, error = self._resolve_fee(fee)
            if error is None:
                error = self._check_time(created_at_time, now)
            fingerprint = None
            if error is None and created_at_time is not None:
                fingerprint = self._fingerprint(
                    "transfer", from_account.key, to.key, amount, effective_fee, memo, created_at_time
                )
                error = await self._check_duplicate(fingerprint)
            if error is not None:
                return Result.failure(error)

            required = amount + effective_fee
            balance = await self._balances.get(from_account.key)
            if balance < required:
                self._logger.warning(
                    f"Transfer rejected: {from_account} has {balance}, needs {required}"
                )
                return Result.failure(InsufficientFunds(balance=balance))

            await self._balances.debit(from_account.key, required)
            await self._balances.credit(to.key, amount)
            await self._burn(effective_fee)

            index = await self._append_block(
                BlockKind.TRANSFER,
                now,
                from_account=from_account,
                to=to,
                amount=amount,
                fee=effective_fee,
                memo=memo,
                created_at_time=created_at_time,
            )
            await self._remember(fingerprint, index, created_at_time)

        self._logger.debug(f"Transfer {amount} {from_account} -> {to} at block {index}")
        return Result.success(index)

    async def approve(
        self,
        caller: str,
        spender: Account,
        amount: int,
        fee: int | None = None,
        expected_allowance: int | None = None,
        expires_at: Timestamp | None = None,
        memo: bytes | None = None,
        from_subaccount: bytes | None = None,
        created_at_time: Timestamp | None = None,
    ) -> Result[int]:
        """
        Set (overwrite) the allowance of ``spender`` over the caller's account.

        The fee is charged to the caller and burned.

        Returns:
            Result with the block index, or an ApproveError variant
        """
        try:
            require_non_negative(amount)
            owner = Account(caller, from_subaccount)
            self._check_memo(memo)
        except ValidationError as e:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, e.message))

        if owner == spender:
            return Result.failure(
                GenericError(ERROR_INVALID_ARGUMENT, "Cannot approve an allowance to self")
            )

        async with self._write_lock:
            now = self._clock()
            effective_fee, error = self._resolve_fee(fee)
            if error is None:
                error = self._check_time(created_at_time, now)
            if error is None and expires_at is not None and expires_at <= now:
                error = Expired(ledger_time=now)
            fingerprint = None
            if error is None and created_at_time is not None:
                fingerprint = self._fingerprint(
                    "approve",
                    owner.key,
                    spender.key,
                    amount,
                    effective_fee,
                    memo,
                    created_at_time,
                    expected_allowance,
                    expires_at,
                )
                error = await self._check_duplicate(fingerprint)
            if error is None and expected_allowance is not None:
                current = await self._allowances.get(owner, spender, now=now)
                if current.allowance != expected_allowance:
                    error = AllowanceChanged(current_allowance=current.allowance)
            if error is not None:
                return Result.failure(error)

            balance = await self._balances.get(owner.key)
            if balance < effective_fee:
                return Result.failure(InsufficientFunds(balance=balance))

            await self._allowances.put(owner, spender, Allowance(amount, expires_at))
            await self._balances.debit(owner.key, effective_fee)
            await self._burn(effective_fee)

            index = await self._append_block(
                BlockKind.APPROVE,
                now,
                from_account=owner,
                spender=spender,
                amount=amount,
                fee=effective_fee,
                memo=memo,
                created_at_time=created_at_time,
                expires_at=expires_at,
            )
            await self._remember(fingerprint, index, created_at_time)

        self._logger.debug(f"Approve {amount} {owner} -> spender {spender} at block {index}")
        return Result.success(index)

    async def transfer_from(
        self,
        caller: str,
        from_account: Account,
        to: Account,
        amount: int,
        fee: int | None = None,
        memo: bytes | None = None,
        spender_subaccount: bytes | None = None,
        created_at_time: Timestamp | None = None,
    ) -> Result[int]:
        """
        Move ``amount`` out of ``from_account`` on its owner's behalf.

        The allowance of (from_account, caller) is reduced by amount + fee.

        Returns:
            Result with the block index, or a TransferFromError variant
        """
        try:
            require_non_negative(amount)
            spender = Account(caller, spender_subaccount)
            self._check_memo(memo)
        except ValidationError as e:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, e.message))

        async with self._write_lock:
            now = self._clock()
            effective_fee, error = self._resolve_fee(fee)
            if error is None:
                error = self._check_time(created_at_time, now)
            fingerprint = None
            if error is None and created_at_time is not None:
                fingerprint = self._fingerprint(
                    "transfer_from",
                    spender.key,
                    from_account.key,
                    to.key,
                    amount,
                    effective_fee,
                    memo,
                    created_at_time,
                )
                error = await self._check_duplicate(fingerprint)
            if error is not None:
                return Result.failure(error)

            required = amount + effective_fee
            allowance = await self._allowances.get(from_account, spender, now=now)
            if allowance.allowance < required:
                return Result.failure(InsufficientAllowance(allowance=allowance.allowance))

            balance = await self._balances.get(from_account.key)
            if balance < required:
                return Result.failure(InsufficientFunds(balance=balance))

            await self._balances.debit(from_account.key, required)
            await self._balances.credit(to.key, amount)
            await self._burn(effective_fee)
            await self._allowances.put(
                from_account,
                spender,
                Allowance(allowance.allowance - required, allowance.expires_at),
            )

            index = await self._append_block(
                BlockKind.TRANSFER_FROM,
                now,
                from_account=from_account,
                to=to,
                spender=spender,
                amount=amount,
                fee=effective_fee,
                memo=memo,
                created_at_time=created_at_time,
            )
            await self._remember(fingerprint, index, created_at_time)

        self._logger.debug(
            f"TransferFrom {amount} {from_account} -> {to} by {spender} at block {index}"
        )
        return Result.success(index)

    async def mint(self, caller: str, to: Account, amount: int) -> Result[int]:
        """
        Create ``amount`` new tokens in ``to``. Fee exempt.

        Only identities on the mint allowlist may call this.
        """
        if not self._config.can_mint(caller):
            self._logger.warning(f"Mint denied: caller {caller} is not authorized")
            return Result.failure(
                GenericError(
                    ERROR_UNAUTHORIZED,
                    f"Only authorized minters can mint tokens. Caller: {caller}",
                )
            )
        try:
            require_non_negative(amount)
        except ValidationError as e:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, e.message))

        async with self._write_lock:
            now = self._clock()
            await self._balances.credit(to.key, amount)
            await self._storage.atomic_add(self.META, "minted", amount)
            index = await self._append_block(
                BlockKind.MINT,
                now,
                from_account=None,
                to=to,
                amount=amount,
                fee=0,
                minter=caller,
            )

        self._logger.info(f"Minted {amount} to {to} (authorized by {caller}) at block {index}")
        return Result.success(index)

    async def prune_dedup(self) -> int:
        """
        Drop deduplication entries that fell out of the transaction window.

        Runs on its own at most once per permitted drift period as calls
        with ``created_at_time`` are recorded.

        Returns:
            Number of entries removed
        """
        async with self._write_lock:
            return await self._prune_dedup(self._clock())

    # ==================== Internals ====================

    def _resolve_fee(self, fee: int | None) -> tuple[int, LedgerError | None]:
        expected = self._config.transfer_fee
        if fee is not None and fee != expected:
            return expected, BadFee(expected_fee=expected)
        return expected, None

    def _check_time(self, created_at_time: Timestamp | None, now: Timestamp) -> LedgerError | None:
        if created_at_time is None:
            return None
        drift = self._config.permitted_drift_ns
        if created_at_time + self._config.tx_window_ns + drift < now:
            return TooOld()
        if created_at_time > now + drift:
            return CreatedInFuture(ledger_time=now)
        return None

    @staticmethod
    def _check_memo(memo: bytes | None) -> None:
        if memo is not None and len(memo) > MAX_MEMO_LENGTH:
            raise ValidationError(f"Memo longer than {MAX_MEMO_LENGTH} bytes")

    @staticmethod
    def _fingerprint(*parts: Any) -> str:
        encoded = json.dumps(
            [p.hex() if isinstance(p, bytes) else p for p in parts], separators=(",", ":")
        )
        return sha256(encoded.encode("utf-8")).hex()

    async def _check_duplicate(self, fingerprint: str) -> LedgerError | None:
        seen = await self._storage.get(self.DEDUP, fingerprint)
        if seen is not None:
            return Duplicate(duplicate_of=int(seen["block_index"]))
        return None

    async def _remember(
        self, fingerprint: str | None, index: int, created_at_time: Timestamp | None
    ) -> None:
        if fingerprint is None:
            return
        await self._storage.save(
            self.DEDUP,
            fingerprint,
            {"block_index": index, "created_at_time": created_at_time},
        )
        now = self._clock()
        if self._last_prune is None or now - self._last_prune >= self._config.permitted_drift_ns:
            await self._prune_dedup(now)

    async def _prune_dedup(self, now: Timestamp) -> int:
        # Entries older than this can only match calls _check_time rejects as TooOld
        horizon = now - self._config.tx_window_ns - self._config.permitted_drift_ns
        removed = 0
        for entry in await self._storage.query(self.DEDUP):
            created = entry.get("created_at_time")
            if created is None or int(created) >= horizon:
                continue
            if await self._storage.delete(self.DEDUP, entry["_key"]):
                removed += 1
        self._last_prune = now
        if removed:
            self._logger.debug(f"Pruned {removed} deduplication entries")
        return removed

    async def _burn(self, amount: int) -> None:
        if amount:
            await self._storage.atomic_add(self.META, "burned", amount)

    async def _append_block(
        self,
        kind: BlockKind,
        timestamp: Timestamp,
        from_account: Account | None,
        amount: int,
        fee: int,
        to: Account | None = None,
        spender: Account | None = None,
        memo: bytes | None = None,
        **extra: Any,
    ) -> int:
        """Assign the next block index and persist the block."""
        index = await self._storage.atomic_add(self.META, "block_height", 1) - 1
        block = {
            "index": index,
            "kind": kind.value,
            "from": from_account.key if from_account else None,
            "to": to.key if to else None,
            "spender": spender.key if spender else None,
            "amount": str(amount),
            "fee": str(fee),
            "memo": memo.hex() if memo else None,
            "timestamp": timestamp,
        }
        block.update(extra)
        await self._storage.save(self.BLOCKS, str(index), block)
        return index
