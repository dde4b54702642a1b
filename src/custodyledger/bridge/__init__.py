"""
Bridge module - clients for the bridging/minter service.
"""

from custodyledger.bridge.base import MinterClient, WithdrawalFee
from custodyledger.bridge.http import HttpMinterClient
from custodyledger.bridge.local import LocalMinter

__all__ = [
    "HttpMinterClient",
    "LocalMinter",
    "MinterClient",
    "WithdrawalFee",
]
