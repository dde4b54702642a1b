import pytest

from custodyledger.bridge.local import LocalMinter
from custodyledger.core.config import Config
from custodyledger.core.types import Account, Environment
from custodyledger.custody.wallet import CustodialWallet
from custodyledger.ledger.client import LocalLedgerClient
from custodyledger.ledger.token import TokenLedger
from custodyledger.storage.memory import InMemoryStorage

# 2026-01-01T00:00:00Z in nanoseconds
START_NS = 1_767_225_600 * 1_000_000_000


class FakeClock:
    """Manually advanced nanosecond clock."""

    def __init__(self, now: int = START_NS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1_000_000_000)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def config() -> Config:
    return Config(env=Environment.TEST)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(storage, config, clock) -> TokenLedger:
    return TokenLedger(storage, config, clock=clock)


@pytest.fixture
def ledger_client(ledger) -> LocalLedgerClient:
    return LocalLedgerClient(ledger)


@pytest.fixture
def minter() -> LocalMinter:
    return LocalMinter()


@pytest.fixture
def wallet(config, ledger_client, storage, minter, clock) -> CustodialWallet:
    return CustodialWallet(config, ledger_client, storage, bridge=minter, clock=clock)


@pytest.fixture
def fund(ledger, config):
    """Mint tokens straight into an account (fee exempt)."""

    async def _fund(owner: str, amount: int, subaccount: bytes | None = None) -> int:
        result = await ledger.mint(config.minting_account, Account(owner, subaccount), amount)
        assert result.ok, result.error
        return result.value

    return _fund
