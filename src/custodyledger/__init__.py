"""
CustodyLedger - token ledger with a custodial wallet in front of it.

A fungible-token ledger (ICRC-1/ICRC-2 style transfers, approvals, delegated
transfers, fee burn, allowlisted minting) and a custodial wallet that keeps
per-user virtual balances collateralized by ledger custody subaccounts.

Usage:
    >>> from custodyledger import CustodyLedger
    >>>
    >>> async with CustodyLedger(env="local") as app:
    ...     await app.wallet.faucet("alice")
    ...     receipt = await app.wallet.deposit_to_custody("alice", 1_000)
    ...     await app.wallet.virtual_transfer("alice", "bob", 400)
"""

from custodyledger.client import CustodyLedger
from custodyledger.core.config import Config
from custodyledger.core.errors import (
    AllowanceChanged,
    AlreadyProcessing,
    AmountTooLow,
    BadBurn,
    BadFee,
    CreatedInFuture,
    Duplicate,
    Expired,
    GenericError,
    InsufficientAllowance,
    InsufficientFunds,
    LedgerError,
    MalformedAddress,
    TemporarilyUnavailable,
    TooOld,
)
from custodyledger.core.exceptions import (
    ConfigurationError,
    CustodyLedgerError,
    OverdraftError,
    TransportError,
    ValidationError,
)
from custodyledger.core.types import (
    Account,
    Environment,
    Result,
    TransactionKind,
    TransactionStatus,
    WithdrawalStatus,
)
from custodyledger.custody import (
    CustodialWallet,
    DepositReceipt,
    ReconciliationMonitor,
    ReserveStatus,
    WalletStatus,
    derive_custody_subaccount,
)
from custodyledger.ledger import TokenLedger, TransactionLog, TransactionRecord
from custodyledger.resilience import retry_if_unavailable

__version__ = "0.1.0"

__all__ = [
    # Main client
    "CustodyLedger",
    "Config",
    # Components
    "TokenLedger",
    "CustodialWallet",
    "ReconciliationMonitor",
    "TransactionLog",
    # Types
    "Account",
    "Environment",
    "Result",
    "TransactionKind",
    "TransactionStatus",
    "WithdrawalStatus",
    "TransactionRecord",
    "DepositReceipt",
    "WalletStatus",
    "ReserveStatus",
    "derive_custody_subaccount",
    "retry_if_unavailable",
    # Error variants
    "LedgerError",
    "AllowanceChanged",
    "AlreadyProcessing",
    "AmountTooLow",
    "BadBurn",
    "BadFee",
    "CreatedInFuture",
    "Duplicate",
    "Expired",
    "GenericError",
    "InsufficientAllowance",
    "InsufficientFunds",
    "MalformedAddress",
    "TemporarilyUnavailable",
    "TooOld",
    # Exceptions
    "CustodyLedgerError",
    "ConfigurationError",
    "OverdraftError",
    "TransportError",
    "ValidationError",
]
