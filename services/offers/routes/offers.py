"""
Offer Routes
============

API endpoints for the offer lifecycle: creation, proofs, decisions,
funding, settlement and expiry.
"""

from fastapi import APIRouter, Depends, Query, status

from services.offers.dependencies import get_offer_services
from services.offers.models import OfferModel, OfferStatus
from services.offers.schemas import (
    DecisionPayload,
    ExpirePayload,
    LedgerAttemptResponse,
    OfferResponse,
    OfferSubmission,
    ProofSubmissionResponse,
)
from services.offers.services import OfferServices
from services.offers.services.decision import Decision
from shared.blockchain import LedgerRequestKind
from shared.logging import bind_context, get_logger
from shared.zk.models import ProofPackage


logger = get_logger(__name__)
router = APIRouter()


def _response(offer: OfferModel) -> OfferResponse:
    return OfferResponse.model_validate(offer.to_dict())


# ============================================================================
# Offers
# ============================================================================


@router.post("", response_model=OfferResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(
    submission: OfferSubmission,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    """
    Create an offer and verify the proofs it carries.

    Resending the same ``offerId`` returns the stored offer unchanged.
    """
    offer = await services.state_machine.create_offer(submission)
    bind_context(offer_id=offer.id)
    return _response(offer)


@router.get("", response_model=list[OfferResponse])
async def list_offers(
    status_filter: OfferStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    services: OfferServices = Depends(get_offer_services),
) -> list[OfferResponse]:
    offers = await services.state_machine.list_offers(status=status_filter, limit=limit)
    return [_response(o) for o in offers]


@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(
    offer_id: str,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    return _response(await services.state_machine.get_offer(offer_id))


@router.post("/{offer_id}/proofs/{kind}", response_model=ProofSubmissionResponse)
async def submit_proof(
    offer_id: str,
    kind: str,
    package: ProofPackage,
    services: OfferServices = Depends(get_offer_services),
) -> ProofSubmissionResponse:
    """Submit or replace the proof for one campaign requirement."""
    bind_context(offer_id=offer_id)
    outcome = await services.state_machine.submit_proof(offer_id, kind, package)
    return ProofSubmissionResponse(offer=_response(outcome.offer), verification=outcome.result)


# ============================================================================
# Decisions
# ============================================================================


@router.post("/{offer_id}/evaluate", response_model=OfferResponse)
async def evaluate_offer(
    offer_id: str,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    """Ask the configured decision oracle to accept or reject."""
    bind_context(offer_id=offer_id)
    offer = await services.state_machine.evaluate(offer_id, services.oracle)
    return _response(offer)


@router.post("/{offer_id}/decision", response_model=OfferResponse)
async def record_decision(
    offer_id: str,
    payload: DecisionPayload,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    """Record a decision made outside this service."""
    bind_context(offer_id=offer_id)
    decision = Decision(
        accept=payload.accept,
        price=payload.price,
        reasoning=payload.reasoning,
        source="external",
    )
    return _response(await services.state_machine.record_decision(offer_id, decision))


# ============================================================================
# Funding and settlement
# ============================================================================


async def _request_and_attempt(
    services: OfferServices,
    offer_id: str,
    kind: LedgerRequestKind,
) -> LedgerAttemptResponse:
    machine = services.state_machine
    if kind == LedgerRequestKind.FUND:
        await machine.request_funding(offer_id)
    else:
        await machine.request_settlement(offer_id)

    attempt = await services.queue.dispatch(offer_id, kind)
    offer = await machine.get_offer(offer_id)
    return LedgerAttemptResponse(
        offer=_response(offer),
        kind=kind,
        outcome=attempt.outcome.value,
        ledger_handle=attempt.ledger_handle,
        error=attempt.error,
    )


@router.post("/{offer_id}/funding", response_model=LedgerAttemptResponse)
async def request_funding(
    offer_id: str,
    services: OfferServices = Depends(get_offer_services),
) -> LedgerAttemptResponse:
    """
    Fund an accepted offer into escrow.

    Runs the first ledger attempt inline; a timeout leaves the offer in
    funding_requested for the settlement queue to retry.
    """
    bind_context(offer_id=offer_id)
    return await _request_and_attempt(services, offer_id, LedgerRequestKind.FUND)


@router.post("/{offer_id}/settlement", response_model=LedgerAttemptResponse)
async def request_settlement(
    offer_id: str,
    services: OfferServices = Depends(get_offer_services),
) -> LedgerAttemptResponse:
    bind_context(offer_id=offer_id)
    return await _request_and_attempt(services, offer_id, LedgerRequestKind.SETTLE)


@router.post("/{offer_id}/expire", response_model=OfferResponse)
async def expire_offer(
    offer_id: str,
    payload: ExpirePayload | None = None,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    bind_context(offer_id=offer_id)
    detail = payload.detail if payload else None
    return _response(await services.state_machine.expire(offer_id, detail=detail))
