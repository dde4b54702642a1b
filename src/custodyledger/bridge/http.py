"""
HttpMinterClient - JSON-over-HTTP client for a remote bridging service.

Endpoints (relative to the base URL):
    POST /get_btc_address           {"owner", "subaccount"} -> {"address"}
    POST /retrieve_btc              {"address", "amount"} -> {"Ok": {"block_index"}} | {"Err": {...}}
    GET  /retrieve_btc_status       ?block_index=N -> {"status"}
    POST /estimate_withdrawal_fee   {"amount"} -> {"bitcoin_fee", "minter_fee"}

Transport failures and non-2xx responses come back as TemporarilyUnavailable.
"""

from __future__ import annotations

from typing import Any

import httpx

from custodyledger.bridge.base import MinterClient, WithdrawalFee
from custodyledger.core.errors import (
    AlreadyProcessing,
    AmountTooLow,
    GenericError,
    InsufficientFunds,
    LedgerError,
    MalformedAddress,
    TemporarilyUnavailable,
)
from custodyledger.core.logging import get_logger
from custodyledger.core.types import Account, Result, WithdrawalStatus


def decode_retrieve_error(payload: dict[str, Any]) -> LedgerError:
    """Map a ``{"Variant": payload}`` error body to an error value."""
    if not payload:
        return GenericError(0, "Empty error from minter")
    variant, value = next(iter(payload.items()))
    if variant == "MalformedAddress":
        return MalformedAddress(str(value))
    if variant == "AmountTooLow":
        return AmountTooLow(min_amount=int(value))
    if variant == "InsufficientFunds":
        return InsufficientFunds(balance=int(value["balance"]))
    if variant == "TemporarilyUnavailable":
        return TemporarilyUnavailable(str(value))
    if variant == "AlreadyProcessing":
        return AlreadyProcessing()
    if variant == "GenericError":
        return GenericError(int(value["error_code"]), value["error_message"])
    return GenericError(0, f"Unknown minter error: {variant}")


class HttpMinterClient(MinterClient):
    """Remote minter over httpx."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Minter service base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._logger = get_logger("bridge.http")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Result[Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return Result.success(response.json())
        except httpx.HTTPError as e:
            self._logger.warning(f"Minter request {method} {path} failed: {e}")
            return Result.failure(TemporarilyUnavailable(f"Minter unreachable: {e}"))

    async def derive_deposit_address(self, account: Account) -> Result[str]:
        result = await self._request("POST", "/get_btc_address", json=account.to_dict())
        if not result.ok:
            return result
        return Result.success(result.value["address"])

    async def initiate_withdrawal(self, address: str, amount: int) -> Result[int]:
        result = await self._request(
            "POST", "/retrieve_btc", json={"address": address, "amount": amount}
        )
        if not result.ok:
            return result
        body = result.value
        if "Err" in body:
            return Result.failure(decode_retrieve_error(body["Err"]))
        return Result.success(int(body["Ok"]["block_index"]))

    async def withdrawal_status(self, block_index: int) -> Result[WithdrawalStatus]:
        result = await self._request(
            "GET", "/retrieve_btc_status", params={"block_index": block_index}
        )
        if not result.ok:
            return result
        try:
            return Result.success(WithdrawalStatus(result.value["status"].lower()))
        except ValueError:
            return Result.success(WithdrawalStatus.UNKNOWN)

    async def estimate_withdrawal_fee(self, amount: int | None = None) -> Result[WithdrawalFee]:
        result = await self._request("POST", "/estimate_withdrawal_fee", json={"amount": amount})
        if not result.ok:
            return result
        return Result.success(
            WithdrawalFee(
                bitcoin_fee=int(result.value["bitcoin_fee"]),
                minter_fee=int(result.value["minter_fee"]),
            )
        )

    async def close(self) -> None:
        await self._client.aclose()
