"""
Type definitions for CustodyLedger.

This module contains the enums, data classes, and type definitions
shared by the token ledger, the custodial wallet and the bridge client.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from custodyledger.core.exceptions import ValidationError

SUBACCOUNT_LENGTH = 32

# Separators used in storage keys ("owner.subaccount", "owner|spender")
RESERVED_OWNER_CHARS = (".", "|")

# Smallest-unit token amount (satoshi for ckTestBTC)
Tokens = int

# Nanoseconds since the Unix epoch
Timestamp = int

T = TypeVar("T")


def now_ns() -> Timestamp:
    """Current wall-clock time in nanoseconds."""
    return time.time_ns()


class Environment(str, Enum):
    """Deployment environment."""

    LOCAL = "local"
    TEST = "test"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> Environment:
        value_lower = value.strip().lower()
        for member in cls:
            if member.value == value_lower:
                return member
        raise ValueError(f"Unknown environment: {value}. Supported: {[e.value for e in cls]}")

    def allows_faucet(self) -> bool:
        return self in (Environment.LOCAL, Environment.TEST)


class TransactionKind(str, Enum):
    """Kind of operation recorded in a transaction history."""

    SEND = "send"
    RECEIVE = "receive"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    MINT = "mint"


class TransactionStatus(str, Enum):
    """Status of a transaction record."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self != TransactionStatus.PENDING


class BlockKind(str, Enum):
    """Kind of state-changing ledger call stored in a block."""

    MINT = "mint"
    TRANSFER = "transfer"
    APPROVE = "approve"
    TRANSFER_FROM = "transfer_from"


class WithdrawalStatus(str, Enum):
    """Status of an external-network withdrawal reported by the bridge."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    SIGNING = "signing"
    SENDING = "sending"
    SUBMITTED = "submitted"
    AMOUNT_TOO_LOW = "amount_too_low"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class Account:
    """
    Ledger account: owner identity plus optional 32-byte subaccount.

    An all-zero subaccount is the default subaccount and compares equal to
    no subaccount at all.
    """

    owner: str
    subaccount: bytes | None = None

    def __post_init__(self) -> None:
        if not self.owner:
            raise ValidationError("Account owner is required")
        reserved = [c for c in RESERVED_OWNER_CHARS if c in self.owner]
        if reserved:
            raise ValidationError(
                f"Account owner must not contain {''.join(reserved)!r}: {self.owner!r}"
            )
        if self.subaccount is not None:
            if len(self.subaccount) != SUBACCOUNT_LENGTH:
                raise ValidationError(
                    f"Subaccount must be {SUBACCOUNT_LENGTH} bytes, got {len(self.subaccount)}"
                )
            if not any(self.subaccount):
                object.__setattr__(self, "subaccount", None)

    @property
    def key(self) -> str:
        """Storage key for this account. Distinct accounts never share a key."""
        if self.subaccount is None:
            return self.owner
        return f"{self.owner}.{self.subaccount.hex()}"

    @classmethod
    def from_key(cls, key: str) -> Account:
        owner, _, sub = key.partition(".")
        return cls(owner=owner, subaccount=bytes.fromhex(sub) if sub else None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "subaccount": self.subaccount.hex() if self.subaccount else None,
        }

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a component-boundary call.

    Exactly one of ``value`` or ``error`` is meaningful; ``ok`` tells which.
    """

    value: T | None = None
    error: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Any) -> Result[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise ``ValueError`` carrying the error."""
        if self.error is not None:
            raise ValueError(f"Result is an error: {self.error}")
        return self.value  # type: ignore[return-value]


def require_non_negative(amount: int, name: str = "amount") -> int:
    """Validate a token amount."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"{name} must be an integer, got {type(amount).__name__}")
    if amount < 0:
        raise ValidationError(f"{name} must not be negative. Got: {amount}")
    return amount
