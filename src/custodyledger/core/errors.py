"""
Structured error values returned across component boundaries.

Every variant is a frozen dataclass whose fields mirror the token-standard
payload exactly, so results can be rendered for existing ICRC-1/ICRC-2
clients without loss. Operations return them inside ``Result`` instead of
raising.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Union


@dataclass(frozen=True)
class LedgerError:
    """Base class for all structured error variants."""

    @property
    def variant(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Render as ``{"Variant": {payload}}``."""
        return {self.variant: asdict(self)}

    def __str__(self) -> str:
        payload = ", ".join(f"{f.name}: {getattr(self, f.name)!r}" for f in fields(self))
        if not payload:
            return self.variant
        return f"{self.variant} {{ {payload} }}"


@dataclass(frozen=True)
class BadFee(LedgerError):
    expected_fee: int


@dataclass(frozen=True)
class BadBurn(LedgerError):
    min_burn_amount: int


@dataclass(frozen=True)
class InsufficientFunds(LedgerError):
    balance: int


@dataclass(frozen=True)
class InsufficientAllowance(LedgerError):
    allowance: int


@dataclass(frozen=True)
class AllowanceChanged(LedgerError):
    current_allowance: int


@dataclass(frozen=True)
class Expired(LedgerError):
    ledger_time: int


@dataclass(frozen=True)
class TooOld(LedgerError):
    pass


@dataclass(frozen=True)
class CreatedInFuture(LedgerError):
    ledger_time: int


@dataclass(frozen=True)
class Duplicate(LedgerError):
    duplicate_of: int


@dataclass(frozen=True)
class TemporarilyUnavailable(LedgerError):
    message: str = ""


@dataclass(frozen=True)
class GenericError(LedgerError):
    error_code: int
    message: str


@dataclass(frozen=True)
class MalformedAddress(LedgerError):
    message: str


@dataclass(frozen=True)
class AmountTooLow(LedgerError):
    min_amount: int


@dataclass(frozen=True)
class AlreadyProcessing(LedgerError):
    pass


# Error codes used in GenericError
ERROR_UNAUTHORIZED = 1
ERROR_CALL_FAILED = 2
ERROR_INVALID_ARGUMENT = 3
ERROR_RECONCILIATION = 4
ERROR_FAUCET_DISABLED = 5


# Closed per-operation unions
TransferError = Union[
    BadFee,
    BadBurn,
    InsufficientFunds,
    TooOld,
    CreatedInFuture,
    TemporarilyUnavailable,
    Duplicate,
    GenericError,
]

ApproveError = Union[
    GenericError,
    TemporarilyUnavailable,
    Duplicate,
    BadFee,
    AllowanceChanged,
    CreatedInFuture,
    TooOld,
    Expired,
    InsufficientFunds,
]

TransferFromError = Union[
    BadFee,
    BadBurn,
    InsufficientFunds,
    InsufficientAllowance,
    TooOld,
    CreatedInFuture,
    Duplicate,
    TemporarilyUnavailable,
    GenericError,
]

RetrieveError = Union[
    MalformedAddress,
    AlreadyProcessing,
    AmountTooLow,
    InsufficientFunds,
    TemporarilyUnavailable,
    GenericError,
]


def call_failed(exc: Exception) -> GenericError:
    """Error value for an inter-component call that did not complete."""
    return GenericError(error_code=ERROR_CALL_FAILED, message=f"Call failed: {exc}")
