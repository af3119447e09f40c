"""
Offer API Schemas
=================

Request and response models for the offer service.

Incoming payloads use the prover and extension's camelCase names; both the
wire names and the Python names are accepted.

Version: 0.1.0
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shared.blockchain import LedgerRequestKind, LedgerStatus
from shared.zk.models import ProofPackage, VerificationResult


class OfferSubmission(BaseModel):
    """Offer creation payload."""

    model_config = ConfigDict(populate_by_name=True)

    campaign_id: str = Field(..., alias="campaignReferenceId", min_length=1)
    amount: int = Field(..., gt=0, description="Asked price in minor units")
    proofs_by_requirement: dict[str, ProofPackage] = Field(
        default_factory=dict,
        alias="proofsByRequirement",
    )
    offer_id: str | None = Field(default=None, alias="offerId", min_length=1, max_length=64)
    recipient: str | None = Field(default=None, description="Wallet that receives the user payout")


class DecisionPayload(BaseModel):
    """Externally made accept/reject decision."""

    accept: bool
    price: int | None = Field(default=None, gt=0)
    reasoning: str = ""


class ExpirePayload(BaseModel):
    detail: str | None = None


class ConfirmationPayload(BaseModel):
    """Ledger callback body."""

    offer_id: str = Field(..., alias="offerId")
    kind: LedgerRequestKind = LedgerRequestKind.FUND
    status: LedgerStatus
    ledger_handle: str = Field(..., alias="ledgerHandle")
    error: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class OfferResponse(BaseModel):
    """Offer state as returned by the API."""

    offer_id: str
    campaign_id: str
    amount: int
    recipient: str | None = None
    status: str
    requirements: dict[str, Any] = Field(default_factory=dict)
    proof_kinds: list[str] = Field(default_factory=list)
    verified_kinds: list[str] = Field(default_factory=list)
    rejection_reason: str | None = None
    status_detail: str | None = None
    price_quoted: int | None = None
    decision_reasoning: str | None = None
    funding_reference: str | None = None
    settlement_reference: str | None = None
    created_at: datetime
    updated_at: datetime
    verified_at: datetime | None = None
    accepted_at: datetime | None = None
    funded_at: datetime | None = None
    settled_at: datetime | None = None


class ProofSubmissionResponse(BaseModel):
    offer: OfferResponse
    verification: VerificationResult


class LedgerAttemptResponse(BaseModel):
    """Result of a funding or settlement request plus its first attempt."""

    offer: OfferResponse
    kind: LedgerRequestKind
    outcome: str
    ledger_handle: str | None = None
    error: str | None = None


class SettlementTaskResponse(BaseModel):
    offer_id: str
    kind: LedgerRequestKind
    attempt_count: int
    max_attempts: int
    next_retry_at: datetime
    last_error: str | None = None
