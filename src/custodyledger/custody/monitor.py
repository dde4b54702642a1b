"""
Reconciliation monitor.

Read-only solvency check comparing the sum of virtual balances against the
custodian's real ledger holdings (operating account plus every custody
subaccount). Results are eventually consistent with in-flight deposits and
withdrawals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from custodyledger.core.errors import call_failed
from custodyledger.core.exceptions import TransportError
from custodyledger.core.logging import get_logger
from custodyledger.core.types import Account, Result
from custodyledger.custody.subaccount import custody_account
from custodyledger.custody.virtual import VirtualBalances
from custodyledger.ledger.client import LedgerClient


@dataclass(frozen=True)
class ReserveStatus:
    """Derived solvency snapshot; never stored."""

    total_virtual: int
    actual: int
    operating_balance: int = 0
    custody_balance: int = 0

    @property
    def ratio(self) -> float:
        if self.total_virtual == 0:
            return 1.0
        return self.actual / self.total_virtual

    @property
    def is_solvent(self) -> bool:
        return self.actual >= self.total_virtual

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_virtual": self.total_virtual,
            "actual": self.actual,
            "ratio": self.ratio,
            "is_solvent": self.is_solvent,
            "operating_balance": self.operating_balance,
            "custody_balance": self.custody_balance,
        }


class ReconciliationMonitor:
    """Aggregates virtual and ledger balances into a ReserveStatus."""

    def __init__(
        self,
        ledger: LedgerClient,
        virtual: VirtualBalances,
        custodian: str,
        domain_tag: str,
    ) -> None:
        self._ledger = ledger
        self._virtual = virtual
        self._custodian = custodian
        self._domain_tag = domain_tag
        self._logger = get_logger("custody.monitor")

    async def reserve_status(self) -> Result[ReserveStatus]:
        """
        Compute the current reserve status.

        Returns:
            Result with the ReserveStatus, or GenericError if a ledger read failed
        """
        total_virtual = await self._virtual.total()
        try:
            operating = await self._ledger.balance_of(Account(self._custodian))
            custody = 0
            for user in await self._virtual.users():
                custody += await self._ledger.balance_of(
                    custody_account(self._custodian, user, self._domain_tag)
                )
        except TransportError as e:
            self._logger.warning(f"Reserve status unavailable: {e}")
            return Result.failure(call_failed(e))

        status = ReserveStatus(
            total_virtual=total_virtual,
            actual=operating + custody,
            operating_balance=operating,
            custody_balance=custody,
        )
        if not status.is_solvent:
            self._logger.error(
                f"Custodian under-collateralized: actual {status.actual} < virtual {total_virtual}"
            )
        return Result.success(status)
