"""
Deterministic custody sub-accounts.

Each user's collateral lives in a subaccount of the custodian's own ledger
identity. The subaccount is

    SHA-256(utf8(user_identity) || utf8(domain_tag))

which is 32 bytes, the ICRC-1 subaccount length. Changing the formula or the
tag moves every user's custody account, so both are fixed per deployment.
"""

from __future__ import annotations

from custodyledger.core.crypto import sha256
from custodyledger.core.types import Account

DEFAULT_DOMAIN_TAG = "custody-subaccount"


def derive_custody_subaccount(user: str, domain_tag: str = DEFAULT_DOMAIN_TAG) -> bytes:
    """32-byte custody subaccount for ``user``."""
    return sha256(user.encode("utf-8"), domain_tag.encode("utf-8"))


def custody_account(custodian: str, user: str, domain_tag: str = DEFAULT_DOMAIN_TAG) -> Account:
    """Ledger account holding ``user``'s collateral under ``custodian``."""
    return Account(owner=custodian, subaccount=derive_custody_subaccount(user, domain_tag))
