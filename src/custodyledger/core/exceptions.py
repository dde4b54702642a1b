"""
Exception hierarchy for CustodyLedger.

Exceptions are internal: component boundaries turn them into structured
error results (see ``custodyledger.core.errors``) before they reach a caller.
All package exceptions inherit from CustodyLedgerError.
"""

from __future__ import annotations

from typing import Any


class CustodyLedgerError(Exception):
    """
    Base exception for all CustodyLedger errors.

    Example:
        >>> try:
        ...     Config.from_env()
        ... except CustodyLedgerError as e:
        ...     print(f"Setup error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(CustodyLedgerError):
    """
    Configuration is missing or invalid.

    Raised when:
    - An unknown storage backend is requested
    - Environment variables cannot be parsed
    """

    pass


class ValidationError(CustodyLedgerError):
    """
    Input validation error.

    Raised when:
    - An amount is negative or not an integer
    - A subaccount has the wrong length
    - A record status transition is not allowed
    """

    pass


class OverdraftError(CustodyLedgerError):
    """
    A balance store refused a decrement that would go below zero.

    Components check balances before mutating, so this signals a broken
    precondition rather than an ordinary insufficient-funds rejection.
    """

    def __init__(
        self,
        message: str,
        key: str,
        balance: int,
        requested: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.key = key
        self.balance = balance
        self.requested = requested

    def __str__(self) -> str:
        return f"{self.message} | Key: {self.key}, Balance: {self.balance}, Requested: {self.requested}"


class TransportError(CustodyLedgerError):
    """
    An inter-component call failed before producing a result.

    Raised by ledger and bridge clients when the callee could not be reached
    or failed unexpectedly. Treated as terminal for the calling operation.
    """

    def __init__(
        self,
        message: str,
        service: str = "unknown",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.service = service

    def __str__(self) -> str:
        return f"[{self.service}] {self.message}"
