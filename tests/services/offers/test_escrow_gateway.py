"""
Escrow Gateway Tests
====================

Payout splits, escrow destinations and ledger interaction.

Version: 0.1.0
"""

from collections.abc import Awaitable, Callable

import pytest

from services.offers.errors import InvalidTransitionError
from services.offers.models import EscrowStatus, OfferModel, OfferStatus
from services.offers.services import (
    AttemptOutcome,
    ConfirmationTimeoutError,
    EscrowGateway,
    OfferStateMachine,
    calculate_splits,
    escrow_destination,
)
from shared.blockchain import LedgerConfirmation, LedgerRequestKind, LedgerStatus, MockLedgerClient
from shared.config import settings
from shared.models.rejections import RejectionReason


OfferFactory = Callable[..., Awaitable[OfferModel]]


async def _funded(
    state_machine: OfferStateMachine,
    gateway: EscrowGateway,
    create_accepted_offer: OfferFactory,
    offer_id: str = "offer-1",
    amount: int = 2500,
    **kwargs: object,
) -> None:
    await create_accepted_offer(offer_id=offer_id, amount=amount, **kwargs)
    await state_machine.request_funding(offer_id)
    attempt = await gateway.attempt(offer_id, LedgerRequestKind.FUND)
    assert attempt.outcome == AttemptOutcome.CONFIRMED


# =============================================================================
# Splits and destinations
# =============================================================================


class TestCalculateSplits:
    """Tests for calculate_splits."""

    def test_default_split(self) -> None:
        split = calculate_splits(10_000)

        assert (split.user, split.publisher, split.platform) == (7000, 2500, 500)

    @pytest.mark.parametrize("amount", [0, 1, 3, 99, 2501, 1_000_003])
    def test_legs_sum_to_amount(self, amount: int) -> None:
        assert calculate_splits(amount).total == amount

    def test_remainder_goes_to_platform(self) -> None:
        split = calculate_splits(3)

        assert split.user == 2
        assert split.publisher == 0
        assert split.platform == 1

    def test_custom_shares(self) -> None:
        split = calculate_splits(1000, user_share_bps=5000, publisher_share_bps=5000)
        assert (split.user, split.publisher, split.platform) == (500, 500, 0)

    def test_shares_over_100_percent(self) -> None:
        with pytest.raises(ValueError):
            calculate_splits(1000, user_share_bps=8000, publisher_share_bps=3000)

    def test_negative_amount(self) -> None:
        with pytest.raises(ValueError):
            calculate_splits(-1)


class TestEscrowDestination:
    def test_deterministic(self) -> None:
        assert escrow_destination("offer-1") == escrow_destination("offer-1")

    def test_distinct_per_offer(self) -> None:
        assert escrow_destination("offer-1") != escrow_destination("offer-2")

    def test_program_scoped(self) -> None:
        assert escrow_destination("offer-1", "program-a") != escrow_destination("offer-1", "program-b")

    def test_format(self) -> None:
        destination = escrow_destination("offer-1")
        assert destination.startswith("escrow_")
        assert len(destination) == len("escrow_") + 40


# =============================================================================
# Funding
# =============================================================================


class TestFunding:
    """Tests for fund and attempt(FUND)."""

    @pytest.mark.asyncio
    async def test_fund_confirms(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer)

        offer = await state_machine.get_offer("offer-1")
        record = await state_machine.get_escrow("offer-1")

        assert offer.status == OfferStatus.FUNDED
        assert offer.funding_reference == record.ledger_handle
        assert record.status == EscrowStatus.CONFIRMED

        (request,) = ledger.submitted_requests("offer-1")
        assert request.amount == 2500
        assert request.destination == escrow_destination("offer-1")

    @pytest.mark.asyncio
    async def test_fund_twice_submits_once(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.hold("offer-1")

        first = await gateway.fund("offer-1")
        second = await gateway.fund("offer-1")

        assert first.ledger_handle == second.ledger_handle
        assert ledger.submission_count == 1

    @pytest.mark.asyncio
    async def test_fund_uses_quoted_price(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_age_offer: OfferFactory,
    ) -> None:
        from services.offers.services import Decision

        await create_age_offer(amount=2500)
        await state_machine.record_decision("offer-1", Decision(accept=True, price=1800))
        await state_machine.request_funding("offer-1")
        await gateway.attempt("offer-1", LedgerRequestKind.FUND)

        assert ledger.submitted_requests("offer-1")[0].amount == 1800

    @pytest.mark.asyncio
    async def test_rejected_funding(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.reject_destination(escrow_destination("offer-1"))

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.FUND)

        assert attempt.outcome == AttemptOutcome.REJECTED
        assert not attempt.retryable
        offer = await state_machine.get_offer("offer-1")
        assert offer.status == OfferStatus.FUNDING_FAILED
        assert offer.rejection_reason == RejectionReason.FUNDING_REJECTED.value

    @pytest.mark.asyncio
    async def test_failed_leg_not_resubmitted(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.reject_destination(escrow_destination("offer-1"))
        await gateway.attempt("offer-1", LedgerRequestKind.FUND)

        with pytest.raises(InvalidTransitionError):
            await gateway.fund("offer-1")

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.hold("offer-1")

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.FUND)

        assert attempt.outcome == AttemptOutcome.TIMEOUT
        assert attempt.retryable
        assert attempt.ledger_handle is not None
        assert (await state_machine.get_offer("offer-1")).status == OfferStatus.FUNDING_REQUESTED

    @pytest.mark.asyncio
    async def test_await_confirmation_timeout(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.hold("offer-1")
        receipt = await gateway.fund("offer-1")

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            await gateway.await_confirmation("offer-1", LedgerRequestKind.FUND, receipt.ledger_handle)

        assert exc_info.value.reason == RejectionReason.FUNDING_TIMEOUT

    @pytest.mark.asyncio
    async def test_ledger_reports_failure(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")
        ledger.hold("offer-1")
        await gateway.fund("offer-1")
        ledger.fail("offer-1", error="blockhash expired")

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.FUND)

        assert attempt.outcome == AttemptOutcome.REJECTED
        offer = await state_machine.get_offer("offer-1")
        assert offer.status == OfferStatus.FUNDING_FAILED
        assert offer.status_detail == "blockhash expired"


# =============================================================================
# Settlement
# =============================================================================


class TestSettlement:
    """Tests for settle and attempt(SETTLE)."""

    @pytest.mark.asyncio
    async def test_settle_pays_splits(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer, amount=10_000)
        await state_machine.request_settlement("offer-1")

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.SETTLE)

        assert attempt.outcome == AttemptOutcome.CONFIRMED
        offer = await state_machine.get_offer("offer-1")
        assert offer.status == OfferStatus.SETTLED
        assert offer.settled_at is not None

        settle = [r for r in ledger.submitted_requests("offer-1") if r.kind == LedgerRequestKind.SETTLE]
        payouts = {p.destination: p.amount for p in settle[0].payouts}
        assert payouts == {
            "wallet-user-1": 7000,
            settings.escrow.publisher_destination: 2500,
            settings.escrow.platform_destination: 500,
        }

    @pytest.mark.asyncio
    async def test_settlement_without_recipient(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer, recipient=None)
        await state_machine.request_settlement("offer-1")

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.SETTLE)

        assert attempt.outcome == AttemptOutcome.REJECTED
        offer = await state_machine.get_offer("offer-1")
        assert offer.status == OfferStatus.SETTLEMENT_FAILED
        assert offer.rejection_reason == RejectionReason.SETTLEMENT_REJECTED.value

    @pytest.mark.asyncio
    async def test_rejected_recipient(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer)
        await state_machine.request_settlement("offer-1")
        ledger.reject_destination("wallet-user-1")

        attempt = await gateway.attempt("offer-1", LedgerRequestKind.SETTLE)

        assert attempt.outcome == AttemptOutcome.REJECTED
        assert (await state_machine.get_offer("offer-1")).status == OfferStatus.SETTLEMENT_FAILED

    @pytest.mark.asyncio
    async def test_settle_before_request_refused(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer)

        with pytest.raises(InvalidTransitionError):
            await gateway.settle("offer-1")

    @pytest.mark.asyncio
    async def test_late_settlement_confirmation(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        ledger: MockLedgerClient,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await _funded(state_machine, gateway, create_accepted_offer)
        await state_machine.request_settlement("offer-1")
        ledger.hold("offer-1")
        receipt = await gateway.settle("offer-1")
        await state_machine.on_settlement_failed("offer-1", RejectionReason.RETRY_EXHAUSTED, "gave up")

        offer = await gateway.handle_confirmation(
            LedgerConfirmation(
                offer_id="offer-1",
                kind=LedgerRequestKind.SETTLE,
                status=LedgerStatus.CONFIRMED,
                ledger_handle=receipt.ledger_handle,
            )
        )

        assert offer.status == OfferStatus.SETTLED
        assert offer.settlement_reference == receipt.ledger_handle


class TestHandleConfirmation:
    @pytest.mark.asyncio
    async def test_pending_status_is_noop(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        create_accepted_offer: OfferFactory,
    ) -> None:
        await create_accepted_offer()
        await state_machine.request_funding("offer-1")

        offer = await gateway.handle_confirmation(
            LedgerConfirmation(offer_id="offer-1", status=LedgerStatus.PENDING, ledger_handle="mock_x")
        )

        assert offer.status == OfferStatus.FUNDING_REQUESTED
