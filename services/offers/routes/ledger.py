"""
Ledger Callback Routes
======================

Webhook endpoint through which the ledger reports final outcomes.
"""

from fastapi import APIRouter, Depends

from services.offers.dependencies import get_offer_services
from services.offers.schemas import ConfirmationPayload, OfferResponse
from services.offers.services import OfferServices
from shared.blockchain import LedgerConfirmation
from shared.logging import bind_context, get_logger


logger = get_logger(__name__)
router = APIRouter()


@router.post("/confirmations", response_model=OfferResponse)
async def ledger_confirmation(
    payload: ConfirmationPayload,
    services: OfferServices = Depends(get_offer_services),
) -> OfferResponse:
    """
    Apply a ledger confirmation or failure.

    Duplicate confirmations are accepted and change nothing.
    """
    bind_context(offer_id=payload.offer_id)
    confirmation = LedgerConfirmation(
        offer_id=payload.offer_id,
        kind=payload.kind,
        status=payload.status,
        ledger_handle=payload.ledger_handle,
        error=payload.error,
    )
    offer = await services.gateway.handle_confirmation(confirmation)
    return OfferResponse.model_validate(offer.to_dict())
