"""
Ledger client - how other components reach the TokenLedger.

The custodial wallet treats the ledger as an external service: every call
is a suspension point and may fail in transport. Failures surface as
TransportError; protocol rejections come back as error results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from redis.exceptions import RedisError

from custodyledger.core.exceptions import CustodyLedgerError, TransportError
from custodyledger.core.logging import get_logger
from custodyledger.core.types import Account, Result, Timestamp
from custodyledger.ledger.token import TokenLedger

# Failures of the callee that count as a failed call rather than a result
_CALL_ERRORS = (CustodyLedgerError, RedisError, OSError)


class LedgerClient(ABC):
    """Operations the custodial wallet needs from the token ledger."""

    @abstractmethod
    async def balance_of(self, account: Account) -> int:
        """
        Read a ledger balance.

        Raises:
            TransportError: If the ledger could not be reached
        """
        ...

    @abstractmethod
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
        Submit a transfer as ``caller``.

        Raises:
            TransportError: If the ledger could not be reached
        """
        ...

    @abstractmethod
    async def mint(self, caller: str, to: Account, amount: int) -> Result[int]:
        """
        Submit a mint as ``caller``.

        Raises:
            TransportError: If the ledger could not be reached
        """
        ...

    @abstractmethod
    async def fee(self) -> int:
        """The ledger's fixed transfer fee."""
        ...


class LocalLedgerClient(LedgerClient):
    """
    In-process client for a TokenLedger.

    Unexpected exceptions raised by the ledger are reported as TransportError,
    like a failed remote call.
    """

    SERVICE = "token_ledger"

    def __init__(self, ledger: TokenLedger) -> None:
        self._ledger = ledger
        self._logger = get_logger("ledger.client")

    def _transport_error(self, operation: str, exc: Exception) -> TransportError:
        self._logger.error(f"Ledger call {operation} failed: {exc}")
        return TransportError(f"{operation} failed: {exc}", service=self.SERVICE)

    async def balance_of(self, account: Account) -> int:
        try:
            return await self._ledger.balance_of(account)
        except _CALL_ERRORS as e:
            raise self._transport_error("balance_of", e) from e

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
        try:
            return await self._ledger.transfer(
                caller,
                to,
                amount,
                fee=fee,
                memo=memo,
                from_subaccount=from_subaccount,
                created_at_time=created_at_time,
            )
        except _CALL_ERRORS as e:
            raise self._transport_error("transfer", e) from e

    async def mint(self, caller: str, to: Account, amount: int) -> Result[int]:
        try:
            return await self._ledger.mint(caller, to, amount)
        except _CALL_ERRORS as e:
            raise self._transport_error("mint", e) from e

    async def fee(self) -> int:
        return self._ledger.fee
