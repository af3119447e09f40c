"""
Rejection Reasons
=================

Closed taxonomy of reasons an offer or proof can be refused.

The string values are part of the external contract: they are returned to
callers in error responses and stored on terminal offers.

Version: 0.1.0
"""

from enum import Enum


class RejectionReason(str, Enum):
    """Why a proof, offer transition or ledger request was refused."""

    # Proof verification (never retried)
    UNKNOWN_CIRCUIT = "UnknownCircuit"
    SIGNAL_SHAPE_MISMATCH = "SignalShapeMismatch"
    SIGNAL_MISMATCH = "SignalMismatch"
    CRYPTOGRAPHICALLY_INVALID = "CryptographicallyInvalid"
    PREDICATE_FALSE = "PredicateFalse"

    # Offer lifecycle
    MISSING_REQUIRED_PROOF = "MissingRequiredProof"
    UNEXPECTED_REQUIREMENT = "UnexpectedRequirement"
    STALE_SUBMISSION = "StaleSubmission"
    INVALID_TRANSITION = "InvalidTransition"
    OFFER_NOT_FOUND = "OfferNotFound"
    UNKNOWN_CAMPAIGN = "UnknownCampaign"
    DECISION_REJECTED = "DecisionRejected"
    BUDGET_EXHAUSTED = "BudgetExhausted"
    EXPIRED = "Expired"

    # Ledger interaction
    FUNDING_REJECTED = "FundingRejected"
    SETTLEMENT_REJECTED = "SettlementRejected"
    FUNDING_TIMEOUT = "FundingTimeout"
    RETRY_EXHAUSTED = "RetryExhausted"

    @property
    def is_retryable(self) -> bool:
        return self is RejectionReason.FUNDING_TIMEOUT
