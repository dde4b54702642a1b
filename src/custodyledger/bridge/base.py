"""
Bridging/minter collaborator interface.

The minter converts between the token and the external settlement network.
The core only derives deposit addresses, starts withdrawals and polls their
status; every method returns a Result and never raises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from custodyledger.core.types import Account, Result, WithdrawalStatus


@dataclass(frozen=True)
class WithdrawalFee:
    """Fee estimate for an external withdrawal."""

    bitcoin_fee: int
    minter_fee: int

    @property
    def total(self) -> int:
        return self.bitcoin_fee + self.minter_fee


class MinterClient(ABC):
    """Async interface to the bridging/minter service."""

    @abstractmethod
    async def derive_deposit_address(self, account: Account) -> Result[str]:
        """External-network deposit address for ``account`` (opaque string)."""
        ...

    @abstractmethod
    async def initiate_withdrawal(self, address: str, amount: int) -> Result[int]:
        """
        Start a withdrawal to ``address``.

        Returns:
            Result with the minter block index, or a RetrieveError variant
        """
        ...

    @abstractmethod
    async def withdrawal_status(self, block_index: int) -> Result[WithdrawalStatus]:
        """Status of a withdrawal started at ``block_index``."""
        ...

    @abstractmethod
    async def estimate_withdrawal_fee(self, amount: int | None = None) -> Result[WithdrawalFee]:
        ...

    async def close(self) -> None:
        """Release client resources."""
        return None
