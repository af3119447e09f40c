"""
Offers Database Models
======================

SQLAlchemy ORM models for the offer lifecycle.

Tables:
- offers: Offer lifecycle and proofs
- escrow_records: One funding record per offer
- settlement_tasks: Durable ledger work with retry state

Version: 0.1.0
"""

from services.offers.models.escrow import (
    EscrowRecordModel,
    EscrowStatus,
    SettlementTaskModel,
)
from services.offers.models.offer import (
    OfferModel,
    OfferStatus,
)

__all__ = [
    # Offer
    "OfferModel",
    "OfferStatus",
    # Escrow
    "EscrowRecordModel",
    "EscrowStatus",
    "SettlementTaskModel",
]
