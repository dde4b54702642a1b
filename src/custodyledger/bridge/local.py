"""
LocalMinter - in-process stand-in for the bridging service.

Used in local and test environments. Addresses are derived from the
account by hashing; withdrawals are validated and tracked but never sent.
"""

from __future__ import annotations

from custodyledger.bridge.base import MinterClient, WithdrawalFee
from custodyledger.core.crypto import sha256
from custodyledger.core.errors import AmountTooLow, MalformedAddress
from custodyledger.core.logging import get_logger
from custodyledger.core.types import Account, Result, WithdrawalStatus

TESTNET_ADDRESS_PREFIXES = ("tb1", "2", "m", "n")

MIN_WITHDRAWAL_AMOUNT = 1_000
MINTER_FEE = 100
NETWORK_FEE = 5_000


def is_testnet_address(address: str) -> bool:
    """Basic prefix check for testnet addresses."""
    return address.startswith(TESTNET_ADDRESS_PREFIXES)


def mock_deposit_address(account: Account) -> str:
    """Deterministic bech32-looking testnet address for ``account``."""
    parts = [account.owner.encode("utf-8")]
    if account.subaccount is not None:
        parts.append(account.subaccount)
    digest = sha256(*parts)
    return f"tb1q{digest[:20].hex()[:32]}"


class LocalMinter(MinterClient):
    """In-memory minter with the reference validation rules."""

    def __init__(self, min_withdrawal_amount: int = MIN_WITHDRAWAL_AMOUNT) -> None:
        self._min_withdrawal_amount = min_withdrawal_amount
        self._block_index = 0
        self._withdrawals: dict[int, WithdrawalStatus] = {}
        self._logger = get_logger("bridge.local")

    async def derive_deposit_address(self, account: Account) -> Result[str]:
        return Result.success(mock_deposit_address(account))

    async def initiate_withdrawal(self, address: str, amount: int) -> Result[int]:
        if not is_testnet_address(address):
            return Result.failure(MalformedAddress("Invalid TestBTC address format"))
        if amount < self._min_withdrawal_amount:
            return Result.failure(AmountTooLow(min_amount=self._min_withdrawal_amount))

        self._block_index += 1
        self._withdrawals[self._block_index] = WithdrawalStatus.PENDING
        self._logger.info(f"Withdrawal of {amount} to {address} queued at {self._block_index}")
        return Result.success(self._block_index)

    async def withdrawal_status(self, block_index: int) -> Result[WithdrawalStatus]:
        return Result.success(self._withdrawals.get(block_index, WithdrawalStatus.UNKNOWN))

    async def estimate_withdrawal_fee(self, amount: int | None = None) -> Result[WithdrawalFee]:
        return Result.success(WithdrawalFee(bitcoin_fee=NETWORK_FEE, minter_fee=MINTER_FEE))

    def advance(self, block_index: int, status: WithdrawalStatus) -> None:
        """Move a tracked withdrawal to ``status`` (simulates the signing pipeline)."""
        if block_index not in self._withdrawals:
            raise KeyError(f"Unknown withdrawal {block_index}")
        self._withdrawals[block_index] = status
