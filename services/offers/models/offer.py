"""
Offer Database Model
====================

SQLAlchemy ORM model for offers.

An offer is created when a user submits attribute proofs against an
advertiser's campaign, and is archived (never deleted) once it reaches a
terminal state.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Enum as SQLEnum,
    Index,
    String,
    Text,
)

from shared.database.postgres import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _values(enum_cls: type[Enum]) -> list[str]:
    return [m.value for m in enum_cls]


class OfferStatus(str, Enum):
    """Offer lifecycle status."""

    CREATED = "created"
    PROOFS_SUBMITTED = "proofs_submitted"
    VERIFIED = "verified"
    DECISION_PENDING = "decision_pending"
    ACCEPTED = "accepted"
    FUNDING_REQUESTED = "funding_requested"
    FUNDED = "funded"
    SETTLEMENT_REQUESTED = "settlement_requested"
    SETTLED = "settled"

    # Side branches
    REJECTED = "rejected"
    FUNDING_FAILED = "funding_failed"
    SETTLEMENT_FAILED = "settlement_failed"
    EXPIRED = "expired"


class OfferModel(Base):
    """SQLAlchemy model for offers."""

    __tablename__ = "offers"
    __table_args__ = (
        Index("ix_offers_status", "status"),
        Index("ix_offers_campaign", "campaign_id"),
        Index("ix_offers_created", "created_at"),
    )

    # Primary key doubles as the client idempotency key
    id = Column(String(64), primary_key=True)

    campaign_id = Column(String(128), nullable=False)
    amount = Column(BigInteger, nullable=False)
    recipient = Column(String(128))

    # requirement kind -> CampaignRequirement dump, frozen at creation
    requirements = Column(JSON, nullable=False, default=dict)
    # requirement kind -> ProofPackage wire form (latest submission wins)
    proofs = Column(JSON, nullable=False, default=dict)
    verified_kinds = Column(JSON, nullable=False, default=list)

    status = Column(
        SQLEnum(OfferStatus, native_enum=False, length=32, values_callable=_values),
        nullable=False,
        default=OfferStatus.CREATED,
    )
    rejection_reason = Column(String(64))
    status_detail = Column(Text)

    # Decision
    price_quoted = Column(BigInteger)
    decision_reasoning = Column(Text)
    budget_reserved = Column(Boolean, nullable=False, default=False)

    # Ledger references
    funding_reference = Column(String(128))
    settlement_reference = Column(String(128))

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    verified_at = Column(UTCDateTime)
    accepted_at = Column(UTCDateTime)
    funded_at = Column(UTCDateTime)
    settled_at = Column(UTCDateTime)

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for API responses."""
        return {
            "offer_id": self.id,
            "campaign_id": self.campaign_id,
            "amount": self.amount,
            "recipient": self.recipient,
            "status": OfferStatus(self.status).value,
            "requirements": dict(self.requirements or {}),
            "proof_kinds": sorted((self.proofs or {}).keys()),
            "verified_kinds": list(self.verified_kinds or []),
            "rejection_reason": self.rejection_reason,
            "status_detail": self.status_detail,
            "price_quoted": self.price_quoted,
            "decision_reasoning": self.decision_reasoning,
            "funding_reference": self.funding_reference,
            "settlement_reference": self.settlement_reference,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "verified_at": self.verified_at,
            "accepted_at": self.accepted_at,
            "funded_at": self.funded_at,
            "settled_at": self.settled_at,
        }
