"""
Offers API Routes
=================

FastAPI routers for offers, ledger callbacks and settlement admin views.
"""

from services.offers.routes import ledger, offers, settlements

__all__ = ["offers", "ledger", "settlements"]
