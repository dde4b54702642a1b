"""
CustodialWallet - custody and virtual balances in front of the token ledger.

Users deposit personal ledger funds into a custody subaccount owned by the
wallet, which credits them a virtual balance. Virtual balances move between
users without touching the ledger and are paid out again through ledger
withdrawals from the wallet's operating account.

Operations that call the ledger suspend while the call is in flight. Any
balance checked before such a call is advisory; the check that guards a
local mutation happens again right before that mutation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from custodyledger.core.config import Config
from custodyledger.core.errors import (
    ERROR_FAUCET_DISABLED,
    ERROR_INVALID_ARGUMENT,
    ERROR_RECONCILIATION,
    GenericError,
    InsufficientFunds,
    call_failed,
)
from custodyledger.core.exceptions import CustodyLedgerError, TransportError, ValidationError
from custodyledger.core.logging import get_logger
from custodyledger.core.types import (
    Account,
    Result,
    Timestamp,
    TransactionKind,
    TransactionStatus,
    WithdrawalStatus,
    now_ns,
)
from custodyledger.custody.monitor import ReconciliationMonitor, ReserveStatus
from custodyledger.custody.subaccount import custody_account
from custodyledger.custody.virtual import VirtualBalances
from custodyledger.ledger.client import LedgerClient
from custodyledger.ledger.history import TransactionLog, TransactionRecord

if TYPE_CHECKING:
    from custodyledger.bridge.base import MinterClient
    from custodyledger.storage.base import StorageBackend

# Storage failures that can interrupt local bookkeeping after a ledger call
_STORAGE_ERRORS = (CustodyLedgerError, RedisError, OSError)


@dataclass(frozen=True)
class DepositReceipt:
    """Outcome of a successful deposit to custody."""

    block_index: int
    amount: int
    new_custodial_balance: int
    remaining_personal_balance: int


@dataclass(frozen=True)
class WalletStatus:
    """
    Best-effort balance overview.

    A balance that could not be read is reported as 0 and its name is listed
    in ``unavailable``, so a display can tell an outage from an empty account.
    """

    custodial_balance: int
    personal_balance: int
    unavailable: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return self.custodial_balance + self.personal_balance

    @property
    def can_deposit(self) -> bool:
        return self.personal_balance > 0

    @property
    def degraded(self) -> bool:
        return bool(self.unavailable)

    def to_dict(self) -> dict[str, Any]:
        return {
            "custodial_balance": self.custodial_balance,
            "personal_balance": self.personal_balance,
            "total": self.total,
            "can_deposit": self.can_deposit,
            "unavailable": list(self.unavailable),
        }


class CustodialWallet:
    """
    Custodial wallet service.

    Owns the virtual balance store and two transaction logs: the general
    history (personal sends, faucet mints, external withdrawals) and the
    custodial history (deposits, withdrawals, virtual transfers).
    """

    def __init__(
        self,
        config: Config,
        ledger: LedgerClient,
        storage: StorageBackend,
        bridge: MinterClient | None = None,
        clock: Callable[[], Timestamp] = now_ns,
    ) -> None:
        """
        Initialize the wallet.

        Args:
            config: Wallet configuration (custodian identity, domain tag, faucet)
            ledger: Client for the token ledger
            storage: Storage for virtual balances and histories
            bridge: Optional bridging/minter client
            clock: Source of ``created_at_time`` for outgoing ledger calls
        """
        self._config = config
        self._ledger = ledger
        self._bridge = bridge
        self._clock = clock
        self._virtual = VirtualBalances(
            storage,
            clock=clock,
            hold_ttl_ns=config.tx_window_ns + config.permitted_drift_ns,
        )
        self._history = TransactionLog(storage, "transactions")
        self._custodial_history = TransactionLog(storage, "custodial_transactions")
        self._monitor = ReconciliationMonitor(
            ledger, self._virtual, config.custodian_id, config.custody_domain_tag
        )
        self._logger = get_logger("custody.wallet")

    @property
    def custodian(self) -> Account:
        """The wallet's own operating account."""
        return Account(self._config.custodian_id)

    @property
    def virtual(self) -> VirtualBalances:
        return self._virtual

    @property
    def monitor(self) -> ReconciliationMonitor:
        return self._monitor

    def custody_account_of(self, user: str) -> Account:
        return custody_account(self._config.custodian_id, user, self._config.custody_domain_tag)

    # ==================== Personal ledger operations ====================

    async def get_balance(self, caller: str) -> Result[int]:
        """Caller's personal ledger balance."""
        account = self._account_of(caller)
        if not account.ok:
            return Result.failure(account.error)
        try:
            return Result.success(await self._ledger.balance_of(account.value))
        except TransportError as e:
            return Result.failure(call_failed(e))

    async def transfer(self, caller: str, recipient: str, amount: int) -> Result[int]:
        """
        Personal ledger transfer from caller to recipient.

        Returns:
            Result with the block index, or the ledger error
        """
        record = TransactionRecord(
            kind=TransactionKind.SEND,
            amount=amount,
            from_id=caller,
            to_id=recipient,
        )
        result = self._account_of(recipient)
        if result.ok:
            try:
                result = await self._ledger.transfer(
                    caller, result.value, amount, created_at_time=self._clock()
                )
            except TransportError as e:
                result = Result.failure(call_failed(e))

        if result.ok:
            record.status = TransactionStatus.CONFIRMED
            record.block_index = result.value
        else:
            record.status = TransactionStatus.FAILED
            record.error = str(result.error)
        await self._history.record(record)
        return result

    async def faucet(self, caller: str) -> Result[str]:
        """
        Mint the faucet amount to the caller. Local and test environments only.
        """
        if not self._config.env.allows_faucet():
            return Result.failure(
                GenericError(ERROR_FAUCET_DISABLED, "Faucet only available in local development")
            )

        amount = self._config.faucet_amount
        result = self._account_of(caller)
        if result.ok:
            try:
                result = await self._ledger.mint(self._config.custodian_id, result.value, amount)
            except TransportError as e:
                result = Result.failure(call_failed(e))

        record = TransactionRecord(
            kind=TransactionKind.MINT,
            amount=amount,
            from_id="faucet",
            to_id=caller,
            token=self._config.token_symbol,
        )
        if not result.ok:
            record.status = TransactionStatus.FAILED
            record.error = str(result.error)
            await self._history.record(record)
            return Result.failure(result.error)

        record.status = TransactionStatus.CONFIRMED
        record.block_index = result.value
        await self._history.record(record)
        whole = amount / 10**self._config.decimals
        return Result.success(
            f"Successfully minted {whole:g} {self._config.token_symbol} to {caller}"
        )

    # ==================== Custody ====================

    async def wallet_status(self, caller: str) -> WalletStatus:
        """
        Custodial and personal ledger balances of the caller.

        Never fails: a balance that cannot be read counts as 0 and is named in
        ``WalletStatus.unavailable``.
        """
        unavailable = []
        try:
            custodial = await self._ledger.balance_of(self.custody_account_of(caller))
        except TransportError as e:
            self._logger.warning(f"Custodial balance of {caller} unavailable: {e}")
            custodial = 0
            unavailable.append("custodial_balance")
        try:
            personal = await self._ledger.balance_of(Account(caller))
        except (TransportError, ValidationError) as e:
            self._logger.warning(f"Personal balance of {caller} unavailable: {e}")
            personal = 0
            unavailable.append("personal_balance")

        return WalletStatus(
            custodial_balance=custodial,
            personal_balance=personal,
            unavailable=tuple(unavailable),
        )

    async def deposit_to_custody(self, caller: str, amount: int) -> Result[DepositReceipt]:
        """
        Move personal funds into the caller's custody subaccount.

        On ledger success the caller's virtual balance grows by ``amount``.
        Ledger errors are returned unchanged after a FAILED record is written.
        """
        if amount <= 0:
            return Result.failure(
                GenericError(ERROR_INVALID_ARGUMENT, f"Deposit amount must be positive. Got: {amount}")
            )
        owner = self._account_of(caller)
        if not owner.ok:
            return Result.failure(owner.error)

        target = self.custody_account_of(caller)
        record = await self._custodial_history.record(
            TransactionRecord(
                kind=TransactionKind.DEPOSIT,
                amount=amount,
                virtual_amount=amount,
                from_id=caller,
                to_id=str(target),
                token=self._config.token_symbol,
            )
        )

        try:
            fee = await self._ledger.fee()
            personal = await self._ledger.balance_of(owner.value)
            custodial = await self._ledger.balance_of(target)
        except TransportError as e:
            return await self._fail(record, call_failed(e))

        if personal < amount + fee:
            self._logger.warning(
                f"Deposit rejected: {caller} has {personal}, needs {amount + fee}"
            )
            return await self._fail(record, InsufficientFunds(balance=personal))

        try:
            result = await self._ledger.transfer(
                caller, target, amount, fee=fee, created_at_time=self._clock()
            )
        except TransportError as e:
            return await self._fail(record, call_failed(e))

        if not result.ok:
            return await self._fail(record, result.error)

        block_index = result.value
        try:
            await self._virtual.register_user(caller)
            await self._virtual.credit(caller, amount)
        except _STORAGE_ERRORS as e:
            return await self._settlement_failed(
                record, f"Deposit of {amount} from {caller}", block_index, e
            )
        try:
            await self._custodial_history.update_status(
                record.id, TransactionStatus.CONFIRMED, block_index=block_index
            )
        except _STORAGE_ERRORS as e:
            self._logger.error(
                f"Deposit of {amount} from {caller} credited at block {block_index} "
                f"but record {record.id} not confirmed: {e}"
            )

        try:
            new_custodial = await self._ledger.balance_of(target)
            remaining = await self._ledger.balance_of(owner.value)
        except TransportError as e:
            self._logger.warning(f"Receipt balances for {caller} estimated: {e}")
            new_custodial = custodial + amount
            remaining = personal - amount - fee

        self._logger.info(f"Deposit {amount} from {caller} to custody at block {block_index}")
        return Result.success(
            DepositReceipt(
                block_index=block_index,
                amount=amount,
                new_custodial_balance=new_custodial,
                remaining_personal_balance=remaining,
            )
        )

    async def withdraw_funds(self, caller: str, amount: int) -> Result[int]:
        """
        Pay ``amount`` of the caller's virtual balance out to their personal account.

        Phase 1 holds the amount, so concurrent withdrawals and virtual
        transfers cannot spend it while the ledger call is in flight. Phase 2
        runs only after ledger confirmation: it re-validates the balance and
        debits it. A failed settlement leaves the virtual balance untouched.

        Returns:
            Result with the ledger block index
        """
        if amount <= 0:
            return Result.failure(
                GenericError(ERROR_INVALID_ARGUMENT, f"Withdrawal amount must be positive. Got: {amount}")
            )
        recipient = self._account_of(caller)
        if not recipient.ok:
            return Result.failure(recipient.error)

        record = await self._custodial_history.record(
            TransactionRecord(
                kind=TransactionKind.WITHDRAW,
                amount=amount,
                virtual_amount=amount,
                from_id=str(self.custodian),
                to_id=caller,
                token=self._config.token_symbol,
            )
        )

        hold_id, shortfall = await self._virtual.place_hold(caller, amount)
        if shortfall is not None:
            self._logger.warning(
                f"Withdrawal rejected: {caller} has {shortfall.balance} available, needs {amount}"
            )
            return await self._fail(record, shortfall)

        try:
            try:
                fee = await self._ledger.fee()
                result = await self._ledger.transfer(
                    self._config.custodian_id,
                    recipient.value,
                    amount,
                    fee=fee,
                    created_at_time=self._clock(),
                )
            except TransportError as e:
                return await self._fail(record, call_failed(e))

            if not result.ok:
                return await self._fail(record, result.error)

            block_index = result.value
            try:
                shortfall = await self._virtual.commit_hold(hold_id, caller, amount)
            except _STORAGE_ERRORS as e:
                return await self._settlement_failed(
                    record, f"Withdrawal of {amount} to {caller}", block_index, e
                )
            if shortfall is not None:
                self._logger.error(
                    f"Withdrawal of {amount} to {caller} settled at block {block_index} "
                    f"but virtual balance is {shortfall.balance}; not debited"
                )
                return await self._fail(
                    record,
                    GenericError(
                        ERROR_RECONCILIATION,
                        f"Settled at block {block_index} but virtual balance changed",
                    ),
                    block_index=block_index,
                )
        finally:
            try:
                await self._virtual.release_hold(hold_id)
            except _STORAGE_ERRORS as e:
                # The hold expires on its own
                self._logger.error(f"Could not release hold {hold_id} of {caller}: {e}")

        try:
            await self._custodial_history.update_status(
                record.id, TransactionStatus.CONFIRMED, block_index=block_index
            )
        except _STORAGE_ERRORS as e:
            self._logger.error(
                f"Withdrawal of {amount} to {caller} debited at block {block_index} "
                f"but record {record.id} not confirmed: {e}"
            )
        self._logger.info(f"Withdrawal {amount} to {caller} at block {block_index}")
        return Result.success(block_index)

    async def virtual_transfer(self, caller: str, to: str, amount: int) -> Result[int]:
        """
        Move virtual balance between two users. No ledger settlement.

        Returns:
            Result with the custodial transaction record ID
        """
        if caller == to:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, "Cannot transfer to self"))
        if amount <= 0:
            return Result.failure(
                GenericError(ERROR_INVALID_ARGUMENT, f"Transfer amount must be positive. Got: {amount}")
            )
        for identity in (caller, to):
            account = self._account_of(identity)
            if not account.ok:
                return Result.failure(account.error)

        record = TransactionRecord(
            kind=TransactionKind.SEND,
            virtual_amount=amount,
            from_id=caller,
            to_id=to,
            token=self._config.token_symbol,
        )
        shortfall = await self._virtual.transfer(caller, to, amount)
        if shortfall is not None:
            record.status = TransactionStatus.FAILED
            record.error = str(shortfall)
            await self._custodial_history.record(record)
            return Result.failure(shortfall)

        record.status = TransactionStatus.CONFIRMED
        record = await self._custodial_history.record(record)
        self._logger.debug(f"Virtual transfer {amount} {caller} -> {to} (record {record.id})")
        return Result.success(record.id)

    async def virtual_balance(self, caller: str) -> int:
        return await self._virtual.balance(caller)

    async def reserve_status(self) -> Result[ReserveStatus]:
        return await self._monitor.reserve_status()

    # ==================== External network ====================

    async def get_deposit_address(self, caller: str) -> Result[str]:
        """External-network deposit address for the caller."""
        if self._bridge is None:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, "Minter not configured"))
        account = self._account_of(caller)
        if not account.ok:
            return Result.failure(account.error)
        return await self._bridge.derive_deposit_address(account.value)

    async def withdraw_to_address(self, caller: str, address: str, amount: int) -> Result[int]:
        """
        Start an external-network withdrawal through the bridge.

        Records a PENDING withdrawal carrying the bridge block index; use
        ``refresh_withdrawal`` to follow it.
        """
        if self._bridge is None:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, "Minter not configured"))

        record = TransactionRecord(
            kind=TransactionKind.WITHDRAW,
            amount=amount,
            from_id=caller,
            to_id=address,
            token=self._config.token_symbol,
        )
        result = await self._bridge.initiate_withdrawal(address, amount)
        if not result.ok:
            record.status = TransactionStatus.FAILED
            record.error = str(result.error)
            await self._history.record(record)
            return result

        record.block_index = result.value
        await self._history.record(record)
        return result

    async def refresh_withdrawal(self, record_id: int) -> Result[TransactionRecord]:
        """Poll the bridge for a PENDING external withdrawal and settle its record."""
        record = await self._history.get(record_id)
        if record is None or record.kind != TransactionKind.WITHDRAW:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, f"No withdrawal {record_id}"))
        if record.status.is_terminal() or record.block_index is None or self._bridge is None:
            return Result.success(record)

        status = await self._bridge.withdrawal_status(record.block_index)
        if not status.ok:
            return Result.failure(status.error)

        if status.value == WithdrawalStatus.CONFIRMED:
            await self._history.update_status(record_id, TransactionStatus.CONFIRMED)
        elif status.value == WithdrawalStatus.AMOUNT_TOO_LOW:
            await self._history.update_status(
                record_id, TransactionStatus.FAILED, error="AmountTooLow"
            )
        return Result.success(await self._history.get(record_id))

    # ==================== History ====================

    async def get_transaction_history(self) -> list[TransactionRecord]:
        """Most recent general records, newest first."""
        return await self._history.recent(self._config.history_limit)

    async def get_custodial_transaction_history(self) -> list[TransactionRecord]:
        """Most recent custodial records, newest first."""
        return await self._custodial_history.recent(self._config.history_limit)

    async def get_transaction(self, record_id: int) -> TransactionRecord | None:
        return await self._history.get(record_id)

    async def get_custodial_transaction(self, record_id: int) -> TransactionRecord | None:
        return await self._custodial_history.get(record_id)

    async def _fail(
        self,
        record: TransactionRecord,
        error: Any,
        block_index: int | None = None,
    ) -> Result[Any]:
        await self._custodial_history.update_status(
            record.id, TransactionStatus.FAILED, block_index=block_index, error=str(error)
        )
        return Result.failure(error)

    async def _settlement_failed(
        self,
        record: TransactionRecord,
        operation: str,
        block_index: int,
        exc: Exception,
    ) -> Result[Any]:
        """
        Report local bookkeeping that broke after the ledger settled.

        The ledger side is final, so the caller gets a reconciliation error
        carrying the block index rather than the storage exception.
        """
        self._logger.error(
            f"{operation} settled at block {block_index} but custody bookkeeping failed: {exc}"
        )
        error = GenericError(
            ERROR_RECONCILIATION,
            f"Settled at block {block_index} but custody bookkeeping failed: {exc}",
        )
        try:
            await self._fail(record, error, block_index=block_index)
        except _STORAGE_ERRORS as e:
            self._logger.error(f"Could not mark record {record.id} failed: {e}")
        return Result.failure(error)

    @staticmethod
    def _account_of(identity: str) -> Result[Account]:
        try:
            return Result.success(Account(identity))
        except ValidationError as e:
            return Result.failure(GenericError(ERROR_INVALID_ARGUMENT, e.message))
