"""CustodyLedger - main entry point wiring ledger, wallet and bridge."""

from __future__ import annotations

from typing import Any

from custodyledger.bridge import HttpMinterClient, LocalMinter, MinterClient
from custodyledger.core.config import Config
from custodyledger.core.logging import configure_from_config, get_logger
from custodyledger.custody.wallet import CustodialWallet
from custodyledger.ledger.client import LocalLedgerClient
from custodyledger.ledger.token import TokenLedger
from custodyledger.storage import StorageBackend, get_storage


class CustodyLedger:
    """
    Token ledger plus custodial wallet in one process.

    Components share one storage backend but use separate collections, so
    ledger balances and virtual balances never collide.

    Example:
        >>> async with CustodyLedger(env="local") as app:
        ...     await app.wallet.faucet("alice")
        ...     await app.wallet.deposit_to_custody("alice", 1_000)
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        bridge: MinterClient | None = None,
        **overrides: Any,
    ) -> None:
        """
        Initialize all components.

        Args:
            config: Configuration (default: ``Config.from_env(**overrides)``)
            storage: Storage backend (default: chosen by ``config.storage_backend``)
            bridge: Minter client (default: HTTP if ``config.bridge_url`` is set, else local)
            **overrides: Config overrides when ``config`` is not given
        """
        self._config = config or Config.from_env(**overrides)

        configure_from_config(self._config)
        self._logger = get_logger("client")
        self._logger.info(
            f"Initializing CustodyLedger (env: {self._config.env.value}, "
            f"storage: {self._config.storage_backend})"
        )

        if storage is None:
            kwargs = {}
            if self._config.storage_backend == "redis" and self._config.redis_url:
                kwargs["redis_url"] = self._config.redis_url
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage

        if bridge is None:
            if self._config.bridge_url:
                bridge = HttpMinterClient(
                    self._config.bridge_url, timeout=self._config.request_timeout
                )
            else:
                bridge = LocalMinter(self._config.min_withdrawal_amount)
        self._bridge = bridge

        self._ledger = TokenLedger(self._storage, self._config)
        self._wallet = CustodialWallet(
            self._config,
            LocalLedgerClient(self._ledger),
            self._storage,
            bridge=self._bridge,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def ledger(self) -> TokenLedger:
        """The token ledger."""
        return self._ledger

    @property
    def wallet(self) -> CustodialWallet:
        """The custodial wallet."""
        return self._wallet

    @property
    def bridge(self) -> MinterClient:
        return self._bridge

    async def health_check(self) -> bool:
        return await self._storage.health_check()

    async def close(self) -> None:
        """Release storage and bridge resources."""
        await self._bridge.close()
        await self._storage.close()

    async def __aenter__(self) -> CustodyLedger:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
