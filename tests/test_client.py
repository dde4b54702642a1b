"""
Tests for the CustodyLedger facade.
"""

import pytest

from custodyledger import CustodyLedger
from custodyledger.bridge import HttpMinterClient, LocalMinter
from custodyledger.core.config import Config
from custodyledger.core.types import Account, Environment
from custodyledger.storage import InMemoryStorage


class TestCustodyLedger:
    def test_defaults_wire_local_components(self, monkeypatch):
        monkeypatch.delenv("CUSTODYLEDGER_BRIDGE_URL", raising=False)
        monkeypatch.delenv("CUSTODYLEDGER_STORAGE_BACKEND", raising=False)

        app = CustodyLedger(env="test")

        assert app.config.env == Environment.TEST
        assert isinstance(app.storage, InMemoryStorage)
        assert isinstance(app.bridge, LocalMinter)

    def test_bridge_url_selects_http_client(self):
        app = CustodyLedger(Config(bridge_url="http://minter.test"))
        assert isinstance(app.bridge, HttpMinterClient)

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        async with CustodyLedger(Config(env=Environment.LOCAL)) as app:
            assert await app.health_check()

            assert (await app.wallet.faucet("alice")).ok
            deposit = await app.wallet.deposit_to_custody("alice", 1_000)
            moved = await app.wallet.virtual_transfer("alice", "bob", 250)
            reserve = await app.wallet.reserve_status()

            assert deposit.ok
            assert moved.ok
            assert await app.wallet.virtual_balance("bob") == 250
            assert await app.ledger.balance_of(Account("alice")) == 100_000_000 - 1_010
            assert reserve.value.is_solvent

    @pytest.mark.asyncio
    async def test_shared_storage_keeps_keyspaces_apart(self):
        storage = InMemoryStorage()
        app = CustodyLedger(Config(), storage=storage)

        await app.wallet.virtual.credit("alice", 10)

        assert await app.ledger.balance_of(Account("alice")) == 0
        assert await app.storage.get_counter("custody_virtual_balances", "alice") == 10
