"""
Test Configuration
==================

Pytest fixtures for PayAttn tests.

Every test that touches the database gets its own SQLite file under
``tmp_path``; the ledger is the in-memory mock and the pairing check is a
fake primitive, so no snarkjs install or network is needed.
"""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["BLOCKCHAIN_MODE"] = "mock"
os.environ["LLM_ENABLED"] = "false"
os.environ["ESCROW_MAX_ATTEMPTS"] = "3"

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

import services.offers.models  # noqa: E402,F401
from services.offers.models import OfferModel  # noqa: E402
from services.offers.schemas import OfferSubmission  # noqa: E402
from services.offers.services import (  # noqa: E402
    Campaign,
    Decision,
    EscrowGateway,
    OfferServices,
    OfferStateMachine,
    RuleBasedDecisionOracle,
    SettlementQueue,
    StaticCampaignCatalog,
)
from shared.blockchain import MockLedgerClient  # noqa: E402
from shared.database import PostgresClient  # noqa: E402
from shared.zk import (  # noqa: E402
    ProofPackage,
    ProofVerifier,
    RangeRequirement,
    SetRequirement,
    VerificationKeyStore,
    ZKProof,
    hash_and_pad,
)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


# =============================================================================
# Proofs
# =============================================================================


class FakePrimitive:
    """
    Stand-in for the Groth16 pairing check.

    Returns ``result`` for every call unless ``error`` is set, in which
    case it raises it. Calls are recorded for assertions.
    """

    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[dict[str, Any], list[str], dict[str, Any]]] = []

    def verify(
        self,
        verification_key: dict[str, Any],
        public_signals: list[str],
        proof: dict[str, Any],
    ) -> bool:
        self.calls.append((verification_key, public_signals, proof))
        if self.error is not None:
            raise self.error
        return self.result


TEST_KEYS = {
    "range_check": {"protocol": "groth16", "curve": "bn128", "nPublic": 3},
    "age_range": {"protocol": "groth16", "curve": "bn128", "nPublic": 3},
    "set_membership": {"protocol": "groth16", "curve": "bn128", "nPublic": 11},
}


def _proof() -> ZKProof:
    return ZKProof(
        pi_a=["1", "2", "1"],
        pi_b=[["3", "4"], ["5", "6"], ["1", "0"]],
        pi_c=["7", "8", "1"],
    )


def range_package(
    minimum: int,
    maximum: int,
    valid: str = "1",
    circuit: str = "range_check",
) -> ProofPackage:
    """Package whose public signals claim ``minimum <= x <= maximum``."""
    return ProofPackage(
        circuit_name=circuit,
        proof=_proof(),
        public_signals=(valid, str(minimum), str(maximum)),
    )


def set_package(values: list[str], valid: str = "1", size: int = 10) -> ProofPackage:
    """Package whose public signals commit to the hashed allow-list ``values``."""
    hashed = hash_and_pad(values, size)
    return ProofPackage(
        circuit_name="set_membership",
        proof=_proof(),
        public_signals=(valid, *(str(h) for h in hashed)),
    )


@pytest.fixture
def primitive() -> FakePrimitive:
    return FakePrimitive()


@pytest.fixture
def key_store(tmp_path: Path) -> VerificationKeyStore:
    return VerificationKeyStore(keys_dir=tmp_path / "keys", preloaded=TEST_KEYS)


@pytest.fixture
def verifier(primitive: FakePrimitive, key_store: VerificationKeyStore) -> ProofVerifier:
    return ProofVerifier(primitive=primitive, key_store=key_store)


@pytest.fixture
def make_range_package() -> Callable[..., ProofPackage]:
    return range_package


@pytest.fixture
def make_set_package() -> Callable[..., ProofPackage]:
    return set_package


# =============================================================================
# Campaigns
# =============================================================================


@pytest.fixture
def campaigns() -> list[Campaign]:
    """Three campaigns: one range requirement, range plus set, no requirements."""
    return [
        Campaign(
            campaign_id="cmp-age",
            name="Running shoes",
            goal="Reach runners aged 25-40",
            requirements={"age": RangeRequirement(min=25, max=40)},
            max_price=5000,
            total_budget=100_000,
        ),
        Campaign(
            campaign_id="cmp-geo",
            name="Streaming launch",
            goal="Adults in launch markets",
            requirements={
                "age": RangeRequirement(min=18, max=65),
                "country": SetRequirement(allowed_values=("US", "CA", "GB")),
            },
            max_price=3000,
            total_budget=10_000,
        ),
        Campaign(
            campaign_id="cmp-open",
            name="Open audience",
            max_price=1000,
            total_budget=5000,
        ),
    ]


@pytest.fixture
def catalog(campaigns: list[Campaign]) -> StaticCampaignCatalog:
    return StaticCampaignCatalog(campaigns)


# =============================================================================
# Database, ledger and wiring
# =============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'offers.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema in a per-test SQLite file."""
    PostgresClient.configure(database_url)
    await PostgresClient.create_tables()
    yield PostgresClient.get_session_factory()
    await PostgresClient.close()


@pytest.fixture
def ledger() -> MockLedgerClient:
    return MockLedgerClient()


@pytest.fixture
def state_machine(
    database: async_sessionmaker[AsyncSession],
    verifier: ProofVerifier,
    catalog: StaticCampaignCatalog,
) -> OfferStateMachine:
    return OfferStateMachine(verifier, catalog, session_factory=database)


@pytest.fixture
def gateway(state_machine: OfferStateMachine, ledger: MockLedgerClient) -> EscrowGateway:
    return EscrowGateway(state_machine, ledger, confirmation_timeout_seconds=0.2)


@pytest.fixture
def queue(state_machine: OfferStateMachine, gateway: EscrowGateway) -> SettlementQueue:
    return SettlementQueue(
        state_machine,
        gateway,
        backoff_base_seconds=1.0,
        backoff_max_seconds=8.0,
        scan_interval_seconds=0.05,
    )


@pytest.fixture
def offer_services(
    state_machine: OfferStateMachine,
    gateway: EscrowGateway,
    queue: SettlementQueue,
    catalog: StaticCampaignCatalog,
) -> OfferServices:
    return OfferServices(
        state_machine=state_machine,
        gateway=gateway,
        queue=queue,
        oracle=RuleBasedDecisionOracle(),
        catalog=catalog,
    )


@pytest_asyncio.fixture
async def offers_client(offer_services: OfferServices) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Offers Service."""
    from services.offers.main import app

    app.state.offers = offer_services
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.state.offers = None


# =============================================================================
# Offer factories
# =============================================================================


@pytest.fixture
def create_age_offer(
    state_machine: OfferStateMachine,
) -> Callable[..., Awaitable[OfferModel]]:
    """Create a verified ``cmp-age`` offer."""

    async def _create(
        offer_id: str = "offer-1",
        amount: int = 2500,
        recipient: str | None = "wallet-user-1",
    ) -> OfferModel:
        return await state_machine.create_offer(
            OfferSubmission(
                campaign_id="cmp-age",
                amount=amount,
                offer_id=offer_id,
                recipient=recipient,
                proofs_by_requirement={"age": range_package(25, 40)},
            )
        )

    return _create


@pytest.fixture
def create_accepted_offer(
    state_machine: OfferStateMachine,
    create_age_offer: Callable[..., Awaitable[OfferModel]],
) -> Callable[..., Awaitable[OfferModel]]:
    """Create a ``cmp-age`` offer and accept it at the asked amount."""

    async def _create(offer_id: str = "offer-1", amount: int = 2500, **kwargs: Any) -> OfferModel:
        await create_age_offer(offer_id=offer_id, amount=amount, **kwargs)
        return await state_machine.record_decision(offer_id, Decision(accept=True, reasoning="ok"))

    return _create
