"""
Offer Service Dependencies
==========================

FastAPI dependency that hands routes the wired offer components.
"""

from fastapi import Request

from services.offers.services import OfferServices


def get_offer_services(request: Request) -> OfferServices:
    """Components built at startup (or installed by tests) on ``app.state``."""
    services: OfferServices | None = getattr(request.app.state, "offers", None)
    if services is None:
        raise RuntimeError("Offer services are not initialised")
    return services
