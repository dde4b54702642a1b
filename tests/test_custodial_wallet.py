"""
Tests for CustodialWallet.

Covers deposits, two-phase withdrawals (including concurrent withdrawals
suspended inside the ledger call), virtual transfers, best-effort status
reads, the faucet and the bridge-backed operations.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import RedisError

from custodyledger.core.errors import (
    ERROR_CALL_FAILED,
    ERROR_FAUCET_DISABLED,
    ERROR_INVALID_ARGUMENT,
    ERROR_RECONCILIATION,
    AmountTooLow,
    GenericError,
    InsufficientFunds,
    MalformedAddress,
    TemporarilyUnavailable,
)
from custodyledger.core.exceptions import TransportError
from custodyledger.core.types import (
    Account,
    Environment,
    Result,
    TransactionKind,
    TransactionStatus,
    WithdrawalStatus,
)
from custodyledger.custody.wallet import CustodialWallet
from custodyledger.ledger.client import LocalLedgerClient

CUSTODIAN = "custodial-wallet"


class GatedLedgerClient(LocalLedgerClient):
    """Ledger client whose transfers suspend until ``gate`` is set."""

    def __init__(self, ledger):
        super().__init__(ledger)
        self.gate = asyncio.Event()
        self.transfers_started = 0

    async def transfer(self, *args, **kwargs):
        self.transfers_started += 1
        await self.gate.wait()
        return await super().transfer(*args, **kwargs)


async def settle() -> None:
    """Let every runnable task reach its next suspension point."""
    for _ in range(20):
        await asyncio.sleep(0)


@pytest.fixture
def gated_client(ledger) -> GatedLedgerClient:
    return GatedLedgerClient(ledger)


@pytest.fixture
def gated_wallet(config, gated_client, storage, minter, clock) -> CustodialWallet:
    return CustodialWallet(config, gated_client, storage, bridge=minter, clock=clock)


class TestDeposit:
    @pytest.mark.asyncio
    async def test_reference_scenario(self, wallet, ledger, fund):
        await fund("alice", 100_000_000)

        result = await wallet.deposit_to_custody("alice", 1_000)

        assert result.ok
        receipt = result.value
        assert receipt.amount == 1_000
        assert receipt.new_custodial_balance == 1_000
        assert receipt.remaining_personal_balance == 100_000_000 - 1_010
        assert await ledger.balance_of(wallet.custody_account_of("alice")) == 1_000
        assert await wallet.virtual_balance("alice") == 1_000

        record = await wallet.get_custodial_transaction(1)
        assert record.kind == TransactionKind.DEPOSIT
        assert record.status == TransactionStatus.CONFIRMED
        assert record.block_index == receipt.block_index

    @pytest.mark.asyncio
    async def test_insufficient_personal_balance(self, wallet, ledger, fund):
        await fund("bob", 999)

        result = await wallet.deposit_to_custody("bob", 1_001)

        assert result.error == InsufficientFunds(balance=999)
        assert await ledger.balance_of(Account("bob")) == 999
        assert await wallet.virtual_balance("bob") == 0
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED
        assert record.error == "InsufficientFunds { balance: 999 }"

    @pytest.mark.asyncio
    async def test_fee_counts_toward_requirement(self, wallet, fund):
        await fund("alice", 1_005)
        result = await wallet.deposit_to_custody("alice", 1_000)
        assert result.error == InsufficientFunds(balance=1_005)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount(self, wallet, amount):
        result = await wallet.deposit_to_custody("alice", amount)
        assert result.error.error_code == ERROR_INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_ledger_error_surfaced_unchanged(self, wallet, ledger_client, fund):
        await fund("alice", 10_000)
        busy = TemporarilyUnavailable("ledger busy")

        with patch.object(ledger_client, "transfer", AsyncMock(return_value=Result.failure(busy))):
            result = await wallet.deposit_to_custody("alice", 1_000)

        assert result.error is busy
        assert await wallet.virtual_balance("alice") == 0
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_failure(self, wallet, ledger_client, fund):
        await fund("alice", 10_000)
        failing = AsyncMock(side_effect=TransportError("connection reset", service="token_ledger"))

        with patch.object(ledger_client, "transfer", failing):
            result = await wallet.deposit_to_custody("alice", 1_000)

        assert result.error == GenericError(
            ERROR_CALL_FAILED, "Call failed: [token_ledger] connection reset"
        )
        assert await wallet.virtual_balance("alice") == 0


    @pytest.mark.asyncio
    async def test_storage_failure_after_settlement(self, wallet, ledger, fund):
        await fund("alice", 10_000)
        broken = AsyncMock(side_effect=RedisError("connection lost"))

        with patch.object(wallet.virtual, "credit", broken):
            result = await wallet.deposit_to_custody("alice", 1_000)

        assert result.error.error_code == ERROR_RECONCILIATION
        assert await ledger.balance_of(wallet.custody_account_of("alice")) == 1_000
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED
        assert record.block_index is not None
        assert "connection lost" in record.error


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_withdraw_settles_then_debits(self, wallet, ledger, fund):
        await fund("alice", 10_000)
        await fund(CUSTODIAN, 5_000)
        await wallet.deposit_to_custody("alice", 1_000)
        personal_before = await ledger.balance_of(Account("alice"))

        result = await wallet.withdraw_funds("alice", 400)

        assert result.ok
        assert await wallet.virtual_balance("alice") == 600
        assert await ledger.balance_of(Account("alice")) == personal_before + 400
        assert await ledger.balance_of(Account(CUSTODIAN)) == 5_000 - 410
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.kind == TransactionKind.WITHDRAW
        assert record.status == TransactionStatus.CONFIRMED
        assert record.block_index == result.value

    @pytest.mark.asyncio
    async def test_insufficient_virtual_balance(self, wallet, ledger, fund):
        await fund(CUSTODIAN, 5_000)
        await wallet.virtual.credit("alice", 50)
        height = await ledger.block_height()

        result = await wallet.withdraw_funds("alice", 100)

        assert result.error == InsufficientFunds(balance=50)
        assert await ledger.block_height() == height

    @pytest.mark.asyncio
    async def test_failed_settlement_leaves_virtual_untouched(self, wallet, fund):
        await fund("alice", 10_000)
        await wallet.deposit_to_custody("alice", 1_000)

        # Operating account is empty, so the ledger rejects the payout
        result = await wallet.withdraw_funds("alice", 400)

        assert result.error == InsufficientFunds(balance=0)
        assert await wallet.virtual_balance("alice") == 1_000
        assert await wallet.virtual.available("alice") == 1_000
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_transport_failure_releases_hold(self, wallet, ledger_client):
        await wallet.virtual.credit("alice", 100)
        failing = AsyncMock(side_effect=TransportError("timeout", service="token_ledger"))

        with patch.object(ledger_client, "transfer", failing):
            result = await wallet.withdraw_funds("alice", 100)

        assert result.error.error_code == ERROR_CALL_FAILED
        assert await wallet.virtual.available("alice") == 100

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_settle_once(
        self, gated_wallet, gated_client, ledger, fund
    ):
        await fund(CUSTODIAN, 10_000)
        await gated_wallet.virtual.credit("alice", 100)

        first = asyncio.create_task(gated_wallet.withdraw_funds("alice", 100))
        second = asyncio.create_task(gated_wallet.withdraw_funds("alice", 100))
        await settle()
        gated_client.gate.set()
        results = await asyncio.gather(first, second)

        successes = [r for r in results if r.ok]
        failures = [r for r in results if not r.ok]
        assert len(successes) == 1
        assert failures[0].error == InsufficientFunds(balance=0)
        assert gated_client.transfers_started == 1
        assert await gated_wallet.virtual_balance("alice") == 0
        assert await ledger.balance_of(Account("alice")) == 100

    @pytest.mark.asyncio
    async def test_virtual_transfer_blocked_during_withdrawal(
        self, gated_wallet, gated_client, fund
    ):
        await fund(CUSTODIAN, 10_000)
        await gated_wallet.virtual.credit("alice", 100)

        withdrawal = asyncio.create_task(gated_wallet.withdraw_funds("alice", 100))
        await settle()
        moved = await gated_wallet.virtual_transfer("alice", "bob", 50)
        gated_client.gate.set()
        withdrawn = await withdrawal

        assert moved.error == InsufficientFunds(balance=0)
        assert withdrawn.ok
        assert await gated_wallet.virtual_balance("alice") == 0
        assert await gated_wallet.virtual_balance("bob") == 0

    @pytest.mark.asyncio
    async def test_stale_balance_detected_after_settlement(
        self, gated_wallet, gated_client, fund
    ):
        await fund(CUSTODIAN, 10_000)
        await gated_wallet.virtual.credit("alice", 100)

        withdrawal = asyncio.create_task(gated_wallet.withdraw_funds("alice", 100))
        await settle()
        # Out-of-band change to the balance while the payout is in flight
        await gated_wallet.virtual._balances.debit("alice", 60)
        gated_client.gate.set()
        result = await withdrawal

        assert result.error.error_code == ERROR_RECONCILIATION
        assert await gated_wallet.virtual_balance("alice") == 40
        record = (await gated_wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED
        assert record.block_index is not None

    @pytest.mark.asyncio
    async def test_history_follows_completion_order(
        self, gated_wallet, gated_client, fund
    ):
        await fund(CUSTODIAN, 10_000)
        await gated_wallet.virtual.credit("alice", 100)

        slow = asyncio.create_task(gated_wallet.withdraw_funds("alice", 100))
        await settle()
        fast = await gated_wallet.withdraw_funds("bob", 50)
        gated_client.gate.set()
        assert (await slow).ok
        assert not fast.ok

        history = await gated_wallet.get_custodial_transaction_history()
        assert [(r.to_id, r.status) for r in history] == [
            ("alice", TransactionStatus.CONFIRMED),
            ("bob", TransactionStatus.FAILED),
        ]

    @pytest.mark.asyncio
    async def test_storage_failure_after_settlement(self, wallet, ledger, fund):
        await fund(CUSTODIAN, 10_000)
        await wallet.virtual.credit("alice", 100)
        broken = AsyncMock(side_effect=RedisError("connection lost"))

        with patch.object(wallet.virtual, "commit_hold", broken):
            result = await wallet.withdraw_funds("alice", 100)

        assert result.error.error_code == ERROR_RECONCILIATION
        assert await ledger.balance_of(Account("alice")) == 100
        assert await wallet.virtual.available("alice") == 100
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED
        assert record.block_index is not None

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, wallet):
        result = await wallet.withdraw_funds("alice", 0)
        assert result.error.error_code == ERROR_INVALID_ARGUMENT


class TestVirtualTransfer:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, 1, 100, 10**12])
    async def test_self_transfer_always_rejected(self, wallet, amount):
        await wallet.virtual.credit("alice", 10**12)

        result = await wallet.virtual_transfer("alice", "alice", amount)

        assert isinstance(result.error, GenericError)
        assert await wallet.virtual_balance("alice") == 10**12

    @pytest.mark.asyncio
    async def test_transfer_moves_balance(self, wallet):
        await wallet.virtual.credit("alice", 100)

        result = await wallet.virtual_transfer("alice", "bob", 40)

        assert result.ok
        assert await wallet.virtual_balance("alice") == 60
        assert await wallet.virtual_balance("bob") == 40
        assert await wallet.virtual.total() == 100
        record = await wallet.get_custodial_transaction(result.value)
        assert record.status == TransactionStatus.CONFIRMED
        assert record.block_index is None
        assert record.virtual_amount == 40

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, wallet):
        await wallet.virtual.credit("alice", 10)

        result = await wallet.virtual_transfer("alice", "bob", 11)

        assert result.error == InsufficientFunds(balance=10)
        assert await wallet.virtual_balance("bob") == 0
        record = (await wallet.get_custodial_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, wallet):
        await wallet.virtual.credit("alice", 10)
        result = await wallet.virtual_transfer("alice", "bob", 0)
        assert result.error.error_code == ERROR_INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_history_is_capped_newest_first(self, wallet):
        await wallet.virtual.credit("alice", 1_000)
        for _ in range(105):
            await wallet.virtual_transfer("alice", "bob", 1)

        history = await wallet.get_custodial_transaction_history()

        assert len(history) == 100
        ids = [r.id for r in history]
        assert ids == sorted(ids, reverse=True)
        assert ids[0] == 105


class TestWalletStatus:
    @pytest.mark.asyncio
    async def test_status(self, wallet, fund):
        await fund("alice", 5_000)
        await wallet.deposit_to_custody("alice", 1_000)

        status = await wallet.wallet_status("alice")

        assert status.custodial_balance == 1_000
        assert status.personal_balance == 3_990
        assert status.total == 4_990
        assert status.can_deposit
        assert not status.degraded

    @pytest.mark.asyncio
    async def test_empty_account_cannot_deposit(self, wallet):
        status = await wallet.wallet_status("nobody")
        assert status.total == 0
        assert not status.can_deposit

    @pytest.mark.asyncio
    async def test_partial_failure_is_flagged(self, wallet, ledger_client, ledger, fund):
        await fund("alice", 5_000)

        async def flaky_balance(account):
            if account.subaccount is not None:
                raise TransportError("unreachable", service="token_ledger")
            return await ledger.balance_of(account)

        with patch.object(ledger_client, "balance_of", side_effect=flaky_balance):
            status = await wallet.wallet_status("alice")

        assert status.custodial_balance == 0
        assert status.personal_balance == 5_000
        assert status.unavailable == ("custodial_balance",)
        assert status.to_dict()["unavailable"] == ["custodial_balance"]


class TestPersonalOperations:
    @pytest.mark.asyncio
    async def test_get_balance(self, wallet, fund):
        await fund("alice", 123)
        assert (await wallet.get_balance("alice")).value == 123

    @pytest.mark.asyncio
    async def test_get_balance_transport_failure(self, wallet, ledger_client):
        failing = AsyncMock(side_effect=TransportError("down", service="token_ledger"))
        with patch.object(ledger_client, "balance_of", failing):
            result = await wallet.get_balance("alice")
        assert result.error.error_code == ERROR_CALL_FAILED

    @pytest.mark.asyncio
    async def test_transfer_records_send(self, wallet, ledger, fund, clock):
        await fund("alice", 1_000)

        result = await wallet.transfer("alice", "bob", 100)

        assert result.ok
        assert await ledger.balance_of(Account("bob")) == 100
        block = await ledger.get_block(result.value)
        assert block["created_at_time"] == clock.now
        record = (await wallet.get_transaction_history())[0]
        assert record.kind == TransactionKind.SEND
        assert record.status == TransactionStatus.CONFIRMED
        assert record.block_index == result.value

    @pytest.mark.asyncio
    async def test_failed_transfer_recorded(self, wallet):
        result = await wallet.transfer("alice", "bob", 100)

        assert result.error == InsufficientFunds(balance=0)
        record = (await wallet.get_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_transfer_to_invalid_recipient(self, wallet, fund):
        await fund("alice", 1_000)

        result = await wallet.transfer("alice", "", 100)

        assert result.error.error_code == ERROR_INVALID_ARGUMENT
        record = (await wallet.get_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_faucet(self, wallet, ledger):
        result = await wallet.faucet("alice")

        assert result.value == "Successfully minted 1 ckTestBTC to alice"
        assert await ledger.balance_of(Account("alice")) == 100_000_000
        record = await wallet.get_transaction(1)
        assert record.kind == TransactionKind.MINT
        assert record.status == TransactionStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_faucet_disabled_in_production(self, config, ledger_client, storage, ledger):
        wallet = CustodialWallet(
            config.with_updates(env=Environment.PRODUCTION), ledger_client, storage
        )

        result = await wallet.faucet("alice")

        assert result.error.error_code == ERROR_FAUCET_DISABLED
        assert await ledger.block_height() == 0


class TestReserveStatus:
    @pytest.mark.asyncio
    async def test_solvent_after_deposits_and_transfers(self, wallet, fund):
        await fund("alice", 10_000)
        await fund("bob", 10_000)
        await wallet.deposit_to_custody("alice", 3_000)
        await wallet.deposit_to_custody("bob", 1_000)
        await wallet.virtual_transfer("alice", "bob", 2_500)

        status = (await wallet.reserve_status()).value

        assert status.total_virtual == 4_000
        assert status.actual == 4_000
        assert status.custody_balance == 4_000
        assert status.is_solvent
        assert status.ratio == 1.0

    @pytest.mark.asyncio
    async def test_withdrawal_fee_erodes_reserve(self, wallet, fund):
        await fund("alice", 10_000)
        await fund(CUSTODIAN, 1_000)
        await wallet.deposit_to_custody("alice", 1_000)

        await wallet.withdraw_funds("alice", 500)
        status = (await wallet.reserve_status()).value

        assert status.total_virtual == 500
        assert status.operating_balance == 1_000 - 510
        assert status.actual == 1_000 + 490

    @pytest.mark.asyncio
    async def test_uncollateralized_credit_is_insolvent(self, wallet):
        await wallet.virtual.credit("carol", 500)

        status = (await wallet.reserve_status()).value

        assert not status.is_solvent
        assert status.ratio == 0.0

    @pytest.mark.asyncio
    async def test_empty_wallet(self, wallet):
        status = (await wallet.reserve_status()).value
        assert status.ratio == 1.0
        assert status.is_solvent

    @pytest.mark.asyncio
    async def test_ledger_unreachable(self, wallet, ledger_client):
        failing = AsyncMock(side_effect=TransportError("down", service="token_ledger"))
        with patch.object(ledger_client, "balance_of", failing):
            result = await wallet.reserve_status()
        assert result.error.error_code == ERROR_CALL_FAILED


class TestExternalWithdrawals:
    @pytest.mark.asyncio
    async def test_deposit_address(self, wallet):
        address = (await wallet.get_deposit_address("alice")).value
        assert address.startswith("tb1q")
        assert address == (await wallet.get_deposit_address("alice")).value
        assert address != (await wallet.get_deposit_address("bob")).value

    @pytest.mark.asyncio
    async def test_malformed_address(self, wallet):
        result = await wallet.withdraw_to_address("alice", "bc1qmainnet", 5_000)

        assert result.error == MalformedAddress("Invalid TestBTC address format")
        record = (await wallet.get_transaction_history())[0]
        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_amount_too_low(self, wallet):
        result = await wallet.withdraw_to_address("alice", "tb1qexample", 999)
        assert result.error == AmountTooLow(min_amount=1_000)

    @pytest.mark.asyncio
    async def test_pending_until_confirmed(self, wallet, minter):
        result = await wallet.withdraw_to_address("alice", "tb1qexample", 5_000)
        record = (await wallet.get_transaction_history())[0]
        assert record.status == TransactionStatus.PENDING
        assert record.block_index == result.value

        unchanged = await wallet.refresh_withdrawal(record.id)
        assert unchanged.value.status == TransactionStatus.PENDING

        minter.advance(result.value, WithdrawalStatus.CONFIRMED)
        refreshed = await wallet.refresh_withdrawal(record.id)
        assert refreshed.value.status == TransactionStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_amount_too_low_status_fails_record(self, wallet, minter):
        result = await wallet.withdraw_to_address("alice", "tb1qexample", 5_000)
        minter.advance(result.value, WithdrawalStatus.AMOUNT_TOO_LOW)

        record = (await wallet.refresh_withdrawal(1)).value

        assert record.status == TransactionStatus.FAILED

    @pytest.mark.asyncio
    async def test_refresh_unknown_record(self, wallet):
        result = await wallet.refresh_withdrawal(99)
        assert result.error.error_code == ERROR_INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_without_bridge(self, config, ledger_client, storage):
        wallet = CustodialWallet(config, ledger_client, storage)
        result = await wallet.get_deposit_address("alice")
        assert isinstance(result.error, GenericError)


class TestIdentityAliasing:
    @pytest.mark.asyncio
    async def test_alias_cannot_spend_custody_collateral(self, wallet, ledger, fund):
        await fund("alice", 10_000)
        await wallet.deposit_to_custody("alice", 1_000)
        custody = wallet.custody_account_of("alice")
        alias = f"{CUSTODIAN}.{custody.subaccount.hex()}"

        result = await wallet.transfer(alias, "mallory", 990)

        assert result.error.error_code == ERROR_INVALID_ARGUMENT
        assert await ledger.balance_of(custody) == 1_000
        assert await ledger.balance_of(Account("mallory")) == 0
        assert (await wallet.get_balance(alias)).error.error_code == ERROR_INVALID_ARGUMENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identity", ["bob.smith", "bob|carol", ""])
    async def test_malformed_identities_rejected(self, wallet, identity):
        await wallet.virtual.credit("alice", 100)

        moved = await wallet.virtual_transfer("alice", identity, 10)
        withdrawn = await wallet.withdraw_funds(identity, 10)
        deposited = await wallet.deposit_to_custody(identity, 10)

        for result in (moved, withdrawn, deposited):
            assert result.error.error_code == ERROR_INVALID_ARGUMENT
        assert await wallet.virtual_balance("alice") == 100
