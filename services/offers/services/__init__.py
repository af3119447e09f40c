"""
Offers Business Logic Services
==============================

Services:
- OfferStateMachine: offer lifecycle under per-offer locks
- EscrowGateway: ledger submission and confirmation handling
- SettlementQueue: durable retries with exponential backoff
- Decision oracles: LLM-backed and rule-based accept/price
- StaticCampaignCatalog: campaign requirements and budget holds

Version: 0.1.0
"""

from dataclasses import dataclass

from services.offers.services.campaigns import (
    Campaign,
    CampaignCatalog,
    StaticCampaignCatalog,
)
from services.offers.services.decision import (
    Decision,
    DecisionContext,
    DecisionOracle,
    LLMDecisionOracle,
    RuleBasedDecisionOracle,
)
from services.offers.services.escrow import (
    AttemptOutcome,
    ConfirmationTimeoutError,
    EscrowAttempt,
    EscrowGateway,
    PayoutSplit,
    calculate_splits,
    escrow_destination,
)
from services.offers.services.settlement_queue import SettlementQueue, backoff_delay
from services.offers.services.state_machine import (
    CORRECTIONS,
    TRANSITIONS,
    OfferLocks,
    OfferStateMachine,
    SubmissionOutcome,
    can_transition,
)
from shared.blockchain import LedgerClient, get_ledger_client
from shared.config import settings
from shared.zk.verifier import ProofVerifier


@dataclass
class OfferServices:
    """Wired set of offer components shared by the routes and the scheduler."""

    state_machine: OfferStateMachine
    gateway: EscrowGateway
    queue: SettlementQueue
    oracle: DecisionOracle
    catalog: CampaignCatalog


def build_offer_services(
    catalog: CampaignCatalog | None = None,
    verifier: ProofVerifier | None = None,
    ledger: LedgerClient | None = None,
    oracle: DecisionOracle | None = None,
    state_machine: OfferStateMachine | None = None,
) -> OfferServices:
    """Wire the components, defaulting each from settings."""
    if catalog is None:
        catalog = (
            StaticCampaignCatalog.from_file(settings.campaigns_file)
            if settings.campaigns_file
            else StaticCampaignCatalog()
        )
    if oracle is None:
        oracle = LLMDecisionOracle() if settings.llm.enabled else RuleBasedDecisionOracle()

    machine = state_machine or OfferStateMachine(verifier or ProofVerifier(), catalog)
    gateway = EscrowGateway(machine, ledger or get_ledger_client())
    queue = SettlementQueue(machine, gateway)
    return OfferServices(
        state_machine=machine,
        gateway=gateway,
        queue=queue,
        oracle=oracle,
        catalog=catalog,
    )


__all__ = [
    "AttemptOutcome",
    "CORRECTIONS",
    "Campaign",
    "CampaignCatalog",
    "ConfirmationTimeoutError",
    "Decision",
    "DecisionContext",
    "DecisionOracle",
    "EscrowAttempt",
    "EscrowGateway",
    "LLMDecisionOracle",
    "OfferLocks",
    "OfferServices",
    "OfferStateMachine",
    "PayoutSplit",
    "RuleBasedDecisionOracle",
    "SettlementQueue",
    "StaticCampaignCatalog",
    "SubmissionOutcome",
    "TRANSITIONS",
    "backoff_delay",
    "build_offer_services",
    "calculate_splits",
    "can_transition",
    "escrow_destination",
]
