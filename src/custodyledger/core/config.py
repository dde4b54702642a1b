"""
Configuration management for CustodyLedger.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any

from custodyledger.core.types import Environment

ENV_PREFIX = "CUSTODYLEDGER_"


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(f"{ENV_PREFIX}{name}", default)
    if required and not value:
        raise ValueError(f"Required environment variable {ENV_PREFIX}{name} is not set")
    return value


def _get_int(name: str, default: int) -> int:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Config:
    """Ledger and custodial wallet configuration."""

    env: Environment = Environment.LOCAL
    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    # Token protocol
    token_name: str = "ckTestBTC"
    token_symbol: str = "ckTestBTC"
    decimals: int = 8
    transfer_fee: int = 10
    minting_account: str = "ckbtc-minter"
    minter_ids: tuple[str, ...] = ("ckbtc-minter", "custodial-wallet")

    # Replay protection window (nanoseconds)
    tx_window_ns: int = 24 * 60 * 60 * 1_000_000_000
    permitted_drift_ns: int = 60 * 1_000_000_000

    # Custodial wallet
    custodian_id: str = "custodial-wallet"
    custody_domain_tag: str = "custody-subaccount"
    faucet_amount: int = 100_000_000
    history_limit: int = 100

    # Bridging collaborator
    bridge_url: str | None = None
    min_withdrawal_amount: int = 1_000
    request_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.custodian_id:
            raise ValueError("custodian_id is required")
        if self.transfer_fee < 0:
            raise ValueError("transfer_fee must not be negative")
        if self.faucet_amount <= 0:
            raise ValueError("faucet_amount must be positive")
        if self.history_limit <= 0:
            raise ValueError("history_limit must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        env = overrides.get("env") or _get_env_var("ENV", default="local")
        env = Environment.from_string(env) if isinstance(env, str) else env

        minter_ids = overrides.get("minter_ids")
        if minter_ids is None:
            raw = _get_env_var("MINTER_IDS")
            minter_ids = (
                tuple(m.strip() for m in raw.split(",") if m.strip()) if raw else cls.minter_ids
            )

        return cls(
            env=env,
            storage_backend=overrides.get("storage_backend")
            or _get_env_var("STORAGE_BACKEND", default="memory"),  # type: ignore
            redis_url=overrides.get("redis_url") or _get_env_var("REDIS_URL"),
            log_level=overrides.get("log_level") or _get_env_var("LOG_LEVEL", default="INFO"),  # type: ignore
            log_json=overrides.get(
                "log_json", (_get_env_var("LOG_JSON") or "").lower() in ("1", "true", "yes")
            ),
            transfer_fee=overrides.get("transfer_fee", _get_int("TRANSFER_FEE", cls.transfer_fee)),
            minting_account=overrides.get("minting_account")
            or _get_env_var("MINTING_ACCOUNT", default=cls.minting_account),  # type: ignore
            minter_ids=tuple(minter_ids),
            custodian_id=overrides.get("custodian_id")
            or _get_env_var("CUSTODIAN_ID", default=cls.custodian_id),  # type: ignore
            custody_domain_tag=overrides.get("custody_domain_tag")
            or _get_env_var("CUSTODY_DOMAIN_TAG", default=cls.custody_domain_tag),  # type: ignore
            faucet_amount=overrides.get(
                "faucet_amount", _get_int("FAUCET_AMOUNT", cls.faucet_amount)
            ),
            history_limit=overrides.get(
                "history_limit", _get_int("HISTORY_LIMIT", cls.history_limit)
            ),
            bridge_url=overrides.get("bridge_url") or _get_env_var("BRIDGE_URL"),
            min_withdrawal_amount=overrides.get(
                "min_withdrawal_amount",
                _get_int("MIN_WITHDRAWAL_AMOUNT", cls.min_withdrawal_amount),
            ),
        )

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(updates)
        return Config(**current)

    def can_mint(self, identity: str) -> bool:
        """Whether ``identity`` is on the mint allowlist."""
        return identity in self.minter_ids
