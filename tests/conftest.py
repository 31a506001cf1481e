import itertools
from typing import Dict, List, Optional

import pytest
from eth_account import Account
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from common import secrets as secrets_module
from facilitator.chains import ChainSubmissionError, TxOutcome
from facilitator.config import FacilitatorSettings
from facilitator.nonce_registry import NonceRegistry
from facilitator.risk.engine import RiskEngine
from facilitator.risk.models import ThreatFlags
from facilitator.risk.sources import RiskDataUnavailable
from facilitator.service import Facilitator
from payer_client.authorization import AuthorizationBuilder

PAYER_KEY = "0x" + "11" * 32
FACILITATOR_KEY = "0x" + "22" * 32
PAYER = Account.from_key(PAYER_KEY).address
FACILITATOR = Account.from_key(FACILITATOR_KEY).address
RESOURCE_PROVIDER = "0x" + "ab" * 20
NOW = 1_760_000_000

POLYGON_AMOY_USDC = "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582"
BASE_SEPOLIA_USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


def pytest_configure(config):
    """If pytest-socket is installed, disable sockets and allow localhost if supported."""
    try:
        import pytest_socket

        pytest_socket.disable_socket()
        if hasattr(pytest_socket, "allow_hosts"):
            pytest_socket.allow_hosts("127.0.0.1", "localhost")
    except ImportError:
        pass


# ---------------------------------------------------------------------------
# Default auth token for API tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _secrets() -> None:
    """Provide default secrets for tests via the secrets manager."""

    secrets_module.secrets.set_override(
        {"API_TOKENS": {"tester": "testtoken"}, "JWT_SECRET": "testsecret"}
    )
    yield
    secrets_module.secrets.set_override({})


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class Clock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeGateway:
    """In-memory ChainGateway recording every call."""

    _hashes = itertools.count(1)

    def __init__(self, network, *, balance: int = 10**12, status: int = 1,
                 fail: Optional[str] = None) -> None:
        self.network = network
        self.balance = balance
        self.status = status
        self.fail = fail
        self.authorizations: List = []
        self.transfers: List = []

    @property
    def facilitator_address(self) -> str:
        return FACILITATOR

    def _tx(self) -> TxOutcome:
        return TxOutcome(tx_hash="0x%064x" % next(self._hashes), status=self.status, block_number=1)

    def transfer_with_authorization(self, auth) -> TxOutcome:
        if self.fail == "submit":
            raise ChainSubmissionError(f"{self.network.name}: rpc down")
        self.authorizations.append(auth)
        return self._tx()

    def balance_of(self, address: str) -> int:
        return self.balance

    def transfer(self, to: str, value: int) -> TxOutcome:
        if self.fail == "payout":
            raise ChainSubmissionError(f"{self.network.name}: payout rpc down")
        self.transfers.append((to, value))
        self.balance -= value
        return self._tx()


class FakeIntel:
    name = "fake_intel"

    def __init__(self, flags: ThreatFlags = ThreatFlags(), *, down: bool = False) -> None:
        self.flags = flags
        self.down = down

    def threat_flags(self, address: str) -> ThreatFlags:
        if self.down:
            raise RiskDataUnavailable(self.name, "connection refused")
        return self.flags


class FakeSanctions:
    name = "fake_oracle"

    def __init__(self, sanctioned: bool = False) -> None:
        self.sanctioned = sanctioned

    def is_sanctioned(self, address: str) -> bool:
        return self.sanctioned


class FakeActivity:
    name = "fake_activity"

    def __init__(self, count: int = 100) -> None:
        self.count = count

    def transaction_count(self, address: str) -> int:
        return self.count


class RecordingAudit:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def record(self, correlation_id, event, details=None) -> None:
        self.events.append((correlation_id, event, details or {}))

    def names(self) -> List[str]:
        return [e[1] for e in self.events]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def nonce_registry() -> NonceRegistry:
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return NonceRegistry(engine)


@pytest.fixture()
def builder(clock) -> AuthorizationBuilder:
    return AuthorizationBuilder(PAYER_KEY, clock=clock)


@pytest.fixture()
def gateways() -> Dict[str, FakeGateway]:
    return {}


@pytest.fixture()
def gateway_factory(gateways):
    def _factory(network):
        return gateways.setdefault(network.name, FakeGateway(network))

    return _factory


@pytest.fixture()
def intel() -> FakeIntel:
    return FakeIntel()


@pytest.fixture()
def risk_engine(intel) -> RiskEngine:
    return RiskEngine(intel, FakeSanctions(), FakeActivity())


@pytest.fixture()
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture()
def facilitator(nonce_registry, risk_engine, gateway_factory, audit, clock) -> Facilitator:
    return Facilitator(
        FacilitatorSettings(),
        nonce_registry,
        risk_engine,
        gateway_factory,
        audit=audit,
        clock=clock,
    )


@pytest.fixture()
def signed(builder):
    """Factory for correctly signed polygon-amoy authorizations."""

    def _signed(value: str = "100000", chain_id: int = 80002,
                contract: str = POLYGON_AMOY_USDC, to: str = FACILITATOR):
        return builder.build(to=to, value=value, verifying_contract=contract, chain_id=chain_id)

    return _signed
