"""
Escrow Gateway
==============

Bridges the offer state machine and the ledger.

- ``fund`` / ``settle`` submit a request keyed by the offer id and return
  the pending handle at once. A record that already holds a live handle is
  never resubmitted.
- ``await_confirmation`` waits a bounded time for the ledger. Running out
  of time is a ``FundingTimeout``, not a failure: the settlement queue
  decides when to give up.
- ``handle_confirmation`` is the single entrypoint for ledger outcomes,
  whether they come from polling or a webhook.

Version: 0.1.0
"""

import asyncio
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from services.offers.errors import InvalidTransitionError
from services.offers.models import EscrowRecordModel, EscrowStatus, OfferModel, OfferStatus
from shared.blockchain import (
    LedgerClient,
    LedgerConfirmation,
    LedgerError,
    LedgerReceipt,
    LedgerRejectedError,
    LedgerRequest,
    LedgerRequestKind,
    LedgerStatus,
    Payout,
    get_ledger_client,
)
from shared.config import settings
from shared.logging import get_logger
from shared.models.rejections import RejectionReason


if TYPE_CHECKING:
    from services.offers.services.state_machine import OfferStateMachine


logger = get_logger(__name__)

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class PayoutSplit:
    """Settlement split of an escrowed amount."""

    user: int
    publisher: int
    platform: int

    @property
    def total(self) -> int:
        return self.user + self.publisher + self.platform


def calculate_splits(
    amount: int,
    user_share_bps: int | None = None,
    publisher_share_bps: int | None = None,
) -> PayoutSplit:
    """
    Split ``amount`` between user, publisher and platform.

    Shares are in basis points (70% / 25% by default); rounding remainder
    goes to the platform so the legs always sum to ``amount``.
    """
    if amount < 0:
        raise ValueError("amount must be non-negative")

    user_bps = settings.escrow.user_share_bps if user_share_bps is None else user_share_bps
    publisher_bps = (
        settings.escrow.publisher_share_bps if publisher_share_bps is None else publisher_share_bps
    )
    if user_bps < 0 or publisher_bps < 0 or user_bps + publisher_bps > BPS_DENOMINATOR:
        raise ValueError("shares must be non-negative and sum to at most 10000 bps")

    user = amount * user_bps // BPS_DENOMINATOR
    publisher = amount * publisher_bps // BPS_DENOMINATOR
    return PayoutSplit(user=user, publisher=publisher, platform=amount - user - publisher)


def escrow_destination(offer_id: str, program_id: str | None = None) -> str:
    """
    Deterministic escrow account for an offer.

    Same offer id, same account: funding the same offer twice can only
    ever target one destination.
    """
    program = program_id or settings.escrow.program_id
    digest = hashlib.sha256(f"{program}:escrow:{offer_id}".encode()).hexdigest()
    return f"escrow_{digest[:40]}"


class AttemptOutcome(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMEOUT = "timeout"


@dataclass
class EscrowAttempt:
    """Classified result of one submit-or-poll plus wait."""

    offer_id: str
    kind: LedgerRequestKind
    outcome: AttemptOutcome
    ledger_handle: str | None = None
    error: str | None = None

    @property
    def retryable(self) -> bool:
        return self.outcome == AttemptOutcome.TIMEOUT


class ConfirmationTimeoutError(Exception):
    """The ledger did not confirm within the configured window."""

    reason = RejectionReason.FUNDING_TIMEOUT

    def __init__(self, offer_id: str, kind: LedgerRequestKind, timeout_seconds: float) -> None:
        super().__init__(
            f"No {kind.value} confirmation for offer {offer_id} within {timeout_seconds}s"
        )
        self.offer_id = offer_id
        self.kind = kind
        self.timeout_seconds = timeout_seconds


_LEDGER_STATUS = {
    EscrowStatus.PENDING: LedgerStatus.PENDING,
    EscrowStatus.CONFIRMED: LedgerStatus.CONFIRMED,
    EscrowStatus.FAILED: LedgerStatus.FAILED,
}

_REQUESTED_STATUS = {
    LedgerRequestKind.FUND: OfferStatus.FUNDING_REQUESTED,
    LedgerRequestKind.SETTLE: OfferStatus.SETTLEMENT_REQUESTED,
}


class EscrowGateway:
    """
    Ledger-facing half of the offer lifecycle.

    Usage:
        gateway = EscrowGateway(state_machine)
        attempt = await gateway.attempt(offer_id, LedgerRequestKind.FUND)
    """

    def __init__(
        self,
        state_machine: "OfferStateMachine",
        ledger: LedgerClient | None = None,
        confirmation_timeout_seconds: float | None = None,
    ) -> None:
        self.state_machine = state_machine
        self._ledger = ledger
        self.confirmation_timeout_seconds = (
            confirmation_timeout_seconds or settings.escrow.confirmation_timeout_seconds
        )

    @property
    def ledger(self) -> LedgerClient:
        if self._ledger is None:
            self._ledger = get_ledger_client()
        return self._ledger

    async def _load(self, offer_id: str) -> tuple[OfferModel, EscrowRecordModel]:
        async with self.state_machine.transaction() as session:
            offer = await session.get(OfferModel, offer_id)
            record = await session.get(EscrowRecordModel, offer_id)
        if offer is None or record is None:
            current = OfferStatus(offer.status).value if offer is not None else "missing"
            raise InvalidTransitionError(offer_id, current, OfferStatus.FUNDING_REQUESTED.value)
        return offer, record

    def _build_request(
        self,
        offer: OfferModel,
        record: EscrowRecordModel,
        kind: LedgerRequestKind,
    ) -> LedgerRequest:
        if kind == LedgerRequestKind.FUND:
            return LedgerRequest(
                offer_id=offer.id,
                kind=kind,
                amount=record.amount,
                destination=record.destination,
            )

        if not offer.recipient:
            raise LedgerRejectedError(offer.id, kind, "offer has no recipient wallet")

        split = calculate_splits(record.amount)
        return LedgerRequest(
            offer_id=offer.id,
            kind=kind,
            amount=record.amount,
            destination=record.destination,
            payouts=[
                Payout(destination=offer.recipient, amount=split.user),
                Payout(destination=settings.escrow.publisher_destination, amount=split.publisher),
                Payout(destination=settings.escrow.platform_destination, amount=split.platform),
            ],
        )

    async def _submit(self, offer_id: str, kind: LedgerRequestKind) -> LedgerReceipt:
        offer, record = await self._load(offer_id)
        handle = record.handle_for(kind)
        status = record.status_for(kind)

        if status is None:
            raise InvalidTransitionError(
                offer_id,
                OfferStatus(offer.status).value,
                OfferStatus.SETTLEMENT_REQUESTED.value,
            )
        if handle and status != EscrowStatus.FAILED:
            logger.debug(
                "ledger_submission_reused",
                offer_id=offer_id,
                kind=kind.value,
                ledger_handle=handle,
            )
            return LedgerReceipt(
                offer_id=offer_id,
                kind=kind,
                ledger_handle=handle,
                status=_LEDGER_STATUS[status],
            )
        if status == EscrowStatus.FAILED:
            raise InvalidTransitionError(
                offer_id,
                OfferStatus(offer.status).value,
                OfferStatus.FUNDED.value if kind == LedgerRequestKind.FUND else OfferStatus.SETTLED.value,
            )

        # First submission only from the matching requested state
        required = _REQUESTED_STATUS[kind]
        if offer.status != required:
            raise InvalidTransitionError(offer_id, OfferStatus(offer.status).value, required.value)

        request = self._build_request(offer, record, kind)
        receipt = await self.ledger.submit(request)
        await self.state_machine.record_ledger_handle(offer_id, kind, receipt.ledger_handle)

        logger.info(
            "ledger_request_submitted",
            offer_id=offer_id,
            kind=kind.value,
            amount=request.amount,
            ledger_handle=receipt.ledger_handle,
        )
        return receipt

    async def fund(self, offer_id: str) -> LedgerReceipt:
        """
        Submit the funding transfer for an offer in funding_requested.

        Raises:
            LedgerRejectedError: If the ledger refuses the transfer
        """
        return await self._submit(offer_id, LedgerRequestKind.FUND)

    async def settle(self, offer_id: str) -> LedgerReceipt:
        """Submit the settlement payouts for an offer in settlement_requested."""
        return await self._submit(offer_id, LedgerRequestKind.SETTLE)

    async def await_confirmation(
        self,
        offer_id: str,
        kind: LedgerRequestKind,
        ledger_handle: str | None = None,
    ) -> LedgerConfirmation:
        """
        Wait for the ledger's final word on a request.

        Raises:
            ConfirmationTimeoutError: If the window elapses first
        """
        if ledger_handle is None:
            _, record = await self._load(offer_id)
            ledger_handle = record.handle_for(kind)
            if ledger_handle is None:
                raise LedgerError(f"No {kind.value} submission recorded for offer {offer_id}")

        try:
            return await asyncio.wait_for(
                self.ledger.wait_for_confirmation(ledger_handle),
                timeout=self.confirmation_timeout_seconds,
            )
        except TimeoutError:
            raise ConfirmationTimeoutError(offer_id, kind, self.confirmation_timeout_seconds) from None

    async def handle_confirmation(self, confirmation: LedgerConfirmation) -> OfferModel:
        """Route a ledger outcome to the state machine."""
        offer_id = confirmation.offer_id
        fund = confirmation.kind == LedgerRequestKind.FUND

        logger.info(
            "ledger_confirmation_received",
            offer_id=offer_id,
            kind=confirmation.kind.value,
            status=confirmation.status.value,
            ledger_handle=confirmation.ledger_handle,
        )

        if confirmation.status == LedgerStatus.CONFIRMED:
            if fund:
                return await self.state_machine.on_funding_confirmed(offer_id, confirmation.ledger_handle)
            return await self.state_machine.on_settlement_confirmed(offer_id, confirmation.ledger_handle)

        if confirmation.status == LedgerStatus.FAILED:
            detail = confirmation.error or "Ledger reported failure"
            if fund:
                return await self.state_machine.on_funding_failed(
                    offer_id, RejectionReason.FUNDING_REJECTED, detail
                )
            return await self.state_machine.on_settlement_failed(
                offer_id, RejectionReason.SETTLEMENT_REJECTED, detail
            )

        return await self.state_machine.get_offer(offer_id)

    async def attempt(self, offer_id: str, kind: LedgerRequestKind) -> EscrowAttempt:
        """
        One submit-or-poll plus a bounded wait, classified.

        Rejections are applied to the offer here; timeouts are left for the
        settlement queue to count.
        """
        handle: str | None = None
        try:
            receipt = await self._submit(offer_id, kind)
            handle = receipt.ledger_handle
            if receipt.status == LedgerStatus.PENDING:
                confirmation = await self.await_confirmation(offer_id, kind, handle)
            else:
                confirmation = LedgerConfirmation(
                    offer_id=offer_id,
                    kind=kind,
                    status=receipt.status,
                    ledger_handle=handle,
                )
        except LedgerRejectedError as e:
            reason = (
                RejectionReason.FUNDING_REJECTED
                if kind == LedgerRequestKind.FUND
                else RejectionReason.SETTLEMENT_REJECTED
            )
            logger.warning("ledger_request_rejected", offer_id=offer_id, kind=kind.value, error=e.reason)
            if kind == LedgerRequestKind.FUND:
                await self.state_machine.on_funding_failed(offer_id, reason, e.reason)
            else:
                await self.state_machine.on_settlement_failed(offer_id, reason, e.reason)
            return EscrowAttempt(offer_id, kind, AttemptOutcome.REJECTED, handle, e.reason)
        except ConfirmationTimeoutError as e:
            logger.info("ledger_confirmation_timeout", offer_id=offer_id, kind=kind.value)
            return EscrowAttempt(offer_id, kind, AttemptOutcome.TIMEOUT, handle, str(e))
        except LedgerError as e:
            # Transport trouble is retried like a timeout
            logger.warning("ledger_error", offer_id=offer_id, kind=kind.value, error=str(e))
            return EscrowAttempt(offer_id, kind, AttemptOutcome.TIMEOUT, handle, str(e))

        await self.handle_confirmation(confirmation)
        outcome = (
            AttemptOutcome.CONFIRMED
            if confirmation.status == LedgerStatus.CONFIRMED
            else AttemptOutcome.REJECTED
        )
        return EscrowAttempt(offer_id, kind, outcome, handle, confirmation.error)
