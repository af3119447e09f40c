"""
Offer Errors
============

Domain exceptions raised by the offer service.

Each error carries a ``RejectionReason`` code and an HTTP status that the
service's exception handler returns as
``{"success": false, "error": <reason>, "detail": ...}``.

Version: 0.1.0
"""

from typing import Any

from shared.models import ErrorResponse, RejectionReason


class OfferError(Exception):
    """Base class for offer-service errors."""

    status_code: int = 400
    default_reason: RejectionReason = RejectionReason.INVALID_TRANSITION

    def __init__(
        self,
        detail: str,
        offer_id: str | None = None,
        reason: RejectionReason | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.offer_id = offer_id
        self.reason = reason or self.default_reason

    def to_response(self) -> dict[str, Any]:
        return ErrorResponse(
            error=self.reason.value,
            detail=self.detail,
            status_code=self.status_code,
        ).model_dump()


class OfferNotFoundError(OfferError):
    status_code = 404
    default_reason = RejectionReason.OFFER_NOT_FOUND

    def __init__(self, offer_id: str) -> None:
        super().__init__(f"Offer not found: {offer_id}", offer_id=offer_id)


class CampaignNotFoundError(OfferError):
    status_code = 404
    default_reason = RejectionReason.UNKNOWN_CAMPAIGN

    def __init__(self, campaign_id: str) -> None:
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class InvalidTransitionError(OfferError):
    """Target status is not adjacent to the current one."""

    status_code = 409
    default_reason = RejectionReason.INVALID_TRANSITION

    def __init__(
        self,
        offer_id: str,
        current: str,
        target: str,
        reason: RejectionReason | None = None,
    ) -> None:
        super().__init__(
            f"Offer {offer_id} cannot move from {current} to {target}",
            offer_id=offer_id,
            reason=reason,
        )
        self.current = current
        self.target = target


class MissingRequiredProofError(InvalidTransitionError):
    """A decision was requested before every requirement had a verified proof."""

    default_reason = RejectionReason.MISSING_REQUIRED_PROOF


class StaleSubmissionError(OfferError):
    """Proof arrived after the offer left the proof-collecting states."""

    status_code = 409
    default_reason = RejectionReason.STALE_SUBMISSION

    def __init__(self, offer_id: str, status: str) -> None:
        super().__init__(
            f"Offer {offer_id} no longer accepts proofs (status {status})",
            offer_id=offer_id,
        )
        self.status = status


class UnexpectedRequirementError(OfferError):
    """Proof submitted for a requirement the campaign does not have."""

    status_code = 422
    default_reason = RejectionReason.UNEXPECTED_REQUIREMENT

    def __init__(self, offer_id: str, kind: str, expected: list[str]) -> None:
        super().__init__(
            f"Offer {offer_id} has no requirement {kind!r}. Expected one of: {', '.join(sorted(expected))}",
            offer_id=offer_id,
        )
        self.kind = kind
        self.expected = sorted(expected)
