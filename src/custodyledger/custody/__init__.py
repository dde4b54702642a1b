"""
Custody module - custodial wallet, virtual balances and reserve monitoring.
"""

from custodyledger.custody.monitor import ReconciliationMonitor, ReserveStatus
from custodyledger.custody.subaccount import (
    DEFAULT_DOMAIN_TAG,
    custody_account,
    derive_custody_subaccount,
)
from custodyledger.custody.virtual import VirtualBalances
from custodyledger.custody.wallet import CustodialWallet, DepositReceipt, WalletStatus

__all__ = [
    "DEFAULT_DOMAIN_TAG",
    "CustodialWallet",
    "DepositReceipt",
    "ReconciliationMonitor",
    "ReserveStatus",
    "VirtualBalances",
    "WalletStatus",
    "custody_account",
    "derive_custody_subaccount",
]
