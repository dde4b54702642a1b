"""
Ledger module - token ledger, balance stores and transaction history.
"""

from custodyledger.ledger.allowances import Allowance, AllowanceStore
from custodyledger.ledger.balances import BalanceStore
from custodyledger.ledger.client import LedgerClient, LocalLedgerClient
from custodyledger.ledger.history import TransactionLog, TransactionRecord
from custodyledger.ledger.token import TokenLedger

__all__ = [
    "Allowance",
    "AllowanceStore",
    "BalanceStore",
    "LedgerClient",
    "LocalLedgerClient",
    "TokenLedger",
    "TransactionLog",
    "TransactionRecord",
]
