"""
Settlement Admin Routes
=======================

Read-only views of queued ledger work and of offers whose funding or
settlement failed for good.
"""

from fastapi import APIRouter, Depends, Query

from services.offers.dependencies import get_offer_services
from services.offers.schemas import OfferResponse, SettlementTaskResponse
from services.offers.services import OfferServices


router = APIRouter()


@router.get("/pending", response_model=list[SettlementTaskResponse])
async def pending_settlements(
    services: OfferServices = Depends(get_offer_services),
) -> list[SettlementTaskResponse]:
    tasks = await services.queue.list_pending()
    return [
        SettlementTaskResponse(
            offer_id=t.offer_id,
            kind=t.kind,
            attempt_count=t.attempt_count,
            max_attempts=t.max_attempts,
            next_retry_at=t.next_retry_at,
            last_error=t.last_error,
        )
        for t in tasks
    ]


@router.get("/failed", response_model=list[OfferResponse])
async def failed_settlements(
    limit: int = Query(default=100, ge=1, le=500),
    services: OfferServices = Depends(get_offer_services),
) -> list[OfferResponse]:
    """Offers in funding_failed or settlement_failed, newest first."""
    offers = await services.queue.failed_offers(limit=limit)
    return [OfferResponse.model_validate(o.to_dict()) for o in offers]
