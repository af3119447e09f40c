"""
Offer State Machine
===================

Drives an offer from proof submission to escrow funding and settlement.

Lifecycle:
    created -> proofs_submitted -> verified -> decision_pending -> accepted
        -> funding_requested -> funded -> settlement_requested -> settled

Side branches: rejected, funding_failed, settlement_failed, expired.

Every transition for one offer runs under that offer's ``asyncio.Lock``
and inside one database transaction (``SELECT ... FOR UPDATE`` where the
dialect supports it). Different offers never share a lock. Statuses only
move forward; the only exits from a failed or expired state are late
ledger confirmations, which correct the offer to funded or settled.

Version: 0.1.0
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import TypeAdapter
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.offers.errors import (
    CampaignNotFoundError,
    InvalidTransitionError,
    MissingRequiredProofError,
    OfferNotFoundError,
    StaleSubmissionError,
    UnexpectedRequirementError,
)
from services.offers.models import (
    EscrowRecordModel,
    EscrowStatus,
    OfferModel,
    OfferStatus,
    SettlementTaskModel,
)
from services.offers.schemas import OfferSubmission
from services.offers.services.campaigns import CampaignCatalog
from services.offers.services.decision import Decision, DecisionContext, DecisionOracle
from services.offers.services.escrow import escrow_destination
from shared.blockchain import LedgerRequestKind
from shared.config import settings
from shared.database import PostgresClient
from shared.logging import get_logger
from shared.models.rejections import RejectionReason
from shared.zk.models import CampaignRequirement, ProofPackage, VerificationResult
from shared.zk.verifier import ProofVerifier


logger = get_logger(__name__)

_requirement_adapter: TypeAdapter[CampaignRequirement] = TypeAdapter(CampaignRequirement)


S = OfferStatus

TRANSITIONS: dict[OfferStatus, frozenset[OfferStatus]] = {
    S.CREATED: frozenset({S.PROOFS_SUBMITTED, S.REJECTED, S.EXPIRED}),
    S.PROOFS_SUBMITTED: frozenset({S.VERIFIED, S.REJECTED, S.EXPIRED}),
    S.VERIFIED: frozenset({S.DECISION_PENDING, S.REJECTED, S.EXPIRED}),
    S.DECISION_PENDING: frozenset({S.ACCEPTED, S.REJECTED, S.EXPIRED}),
    S.ACCEPTED: frozenset({S.FUNDING_REQUESTED, S.EXPIRED}),
    S.FUNDING_REQUESTED: frozenset({S.FUNDED, S.FUNDING_FAILED, S.EXPIRED}),
    S.FUNDED: frozenset({S.SETTLEMENT_REQUESTED}),
    S.SETTLEMENT_REQUESTED: frozenset({S.SETTLED, S.SETTLEMENT_FAILED}),
    S.SETTLED: frozenset(),
    S.REJECTED: frozenset(),
    S.FUNDING_FAILED: frozenset(),
    S.SETTLEMENT_FAILED: frozenset(),
    S.EXPIRED: frozenset(),
}

# Reachable only when a ledger confirmation arrives late
CORRECTIONS: frozenset[tuple[OfferStatus, OfferStatus]] = frozenset(
    {
        (S.EXPIRED, S.FUNDED),
        (S.FUNDING_FAILED, S.FUNDED),
        (S.SETTLEMENT_FAILED, S.SETTLED),
    }
)

PROOF_OPEN_STATES = frozenset({S.CREATED, S.PROOFS_SUBMITTED, S.VERIFIED, S.DECISION_PENDING})
PRE_ACCEPTED_STATES = PROOF_OPEN_STATES
FUNDED_OR_LATER = frozenset({S.FUNDED, S.SETTLEMENT_REQUESTED, S.SETTLED, S.SETTLEMENT_FAILED})
FAILED_STATES = frozenset({S.FUNDING_FAILED, S.SETTLEMENT_FAILED})

_TIMESTAMP_FIELDS = {
    S.VERIFIED: "verified_at",
    S.ACCEPTED: "accepted_at",
    S.FUNDED: "funded_at",
    S.SETTLED: "settled_at",
}


def can_transition(current: OfferStatus, target: OfferStatus, correction: bool = False) -> bool:
    """Check whether ``current -> target`` is an allowed edge."""
    if target in TRANSITIONS[current]:
        return True
    return correction and (current, target) in CORRECTIONS


class OfferLocks:
    """
    One ``asyncio.Lock`` per offer id.

    A lock lives only while some task holds or waits on it, so the registry
    stays as small as the set of offers currently being changed.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, offer_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(offer_id)
        if lock is None:
            lock = self._locks[offer_id] = asyncio.Lock()
        self._holders[offer_id] = self._holders.get(offer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[offer_id] -= 1
            if self._holders[offer_id] == 0:
                del self._holders[offer_id]
                del self._locks[offer_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class SubmissionOutcome:
    """Offer after a proof submission, with the verifier's verdict."""

    offer: OfferModel
    result: VerificationResult


class OfferStateMachine:
    """
    Offer lifecycle service.

    Usage:
        machine = OfferStateMachine(verifier, catalog)
        offer = await machine.create_offer(submission)
        offer = await machine.evaluate(offer.id, oracle)
        record = await machine.request_funding(offer.id)
    """

    def __init__(
        self,
        verifier: ProofVerifier,
        catalog: CampaignCatalog,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        locks: OfferLocks | None = None,
    ) -> None:
        self.verifier = verifier
        self.catalog = catalog
        self._session_factory = session_factory
        self.locks = locks or OfferLocks()

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = PostgresClient.get_session_factory()
        return self._session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session with an open transaction, committed on clean exit."""
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    @asynccontextmanager
    async def locked(self, offer_id: str) -> AsyncIterator[tuple[AsyncSession, OfferModel]]:
        """Hold the offer's lock and a transaction with the offer row loaded."""
        async with self.locks.hold(offer_id):
            async with self.transaction() as session:
                yield session, await self.load_for_update(session, offer_id)

    async def load_for_update(self, session: AsyncSession, offer_id: str) -> OfferModel:
        result = await session.execute(
            select(OfferModel).where(OfferModel.id == offer_id).with_for_update()
        )
        offer = result.scalar_one_or_none()
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def _get_task(
        self,
        session: AsyncSession,
        offer_id: str,
        kind: LedgerRequestKind,
    ) -> SettlementTaskModel | None:
        result = await session.execute(
            select(SettlementTaskModel).where(
                SettlementTaskModel.offer_id == offer_id,
                SettlementTaskModel.kind == kind,
            )
        )
        return result.scalar_one_or_none()

    async def _delete_task(self, session: AsyncSession, offer_id: str, kind: LedgerRequestKind) -> None:
        await session.execute(
            delete(SettlementTaskModel).where(
                SettlementTaskModel.offer_id == offer_id,
                SettlementTaskModel.kind == kind,
            )
        )

    def apply(
        self,
        offer: OfferModel,
        target: OfferStatus,
        reason: RejectionReason | None = None,
        detail: str | None = None,
        correction: bool = False,
    ) -> None:
        """
        Move ``offer`` to ``target`` in the current transaction.

        Raises:
            InvalidTransitionError: If the edge is not in the adjacency table
        """
        current = OfferStatus(offer.status)
        if not can_transition(current, target, correction=correction):
            raise InvalidTransitionError(offer.id, current.value, target.value)

        now = datetime.now(UTC)
        offer.status = target
        offer.updated_at = now
        if target in _TIMESTAMP_FIELDS:
            setattr(offer, _TIMESTAMP_FIELDS[target], now)
        if reason is not None:
            offer.rejection_reason = reason.value
        if detail is not None:
            offer.status_detail = detail
        if correction and (current, target) in CORRECTIONS:
            # Corrected offers are no longer failed
            offer.rejection_reason = None

        logger.info(
            "offer_transition",
            offer_id=offer.id,
            from_status=current.value,
            to_status=target.value,
            reason=reason.value if reason else None,
            correction=correction and (current, target) in CORRECTIONS,
        )

    async def _release_budget(self, offer: OfferModel) -> None:
        if offer.budget_reserved:
            await self.catalog.release_budget(offer.campaign_id, offer.id)
            offer.budget_reserved = False

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_offer(self, offer_id: str) -> OfferModel:
        async with self.transaction() as session:
            offer = await session.get(OfferModel, offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def list_offers(
        self,
        status: OfferStatus | None = None,
        limit: int = 100,
    ) -> list[OfferModel]:
        query = select(OfferModel).order_by(OfferModel.created_at).limit(limit)
        if status is not None:
            query = query.where(OfferModel.status == status)
        async with self.transaction() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_escrow(self, offer_id: str) -> EscrowRecordModel | None:
        async with self.transaction() as session:
            return await session.get(EscrowRecordModel, offer_id)

    async def restore_budget_reservations(self) -> int:
        """
        Re-apply persisted budget reservations to the catalog.

        Run once at startup; the catalog keeps reservations in memory only.
        Returns the number of offers restored.
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(OfferModel).where(OfferModel.budget_reserved.is_(True)).order_by(OfferModel.accepted_at)
            )
            offers = list(result.scalars().all())

        restored = 0
        for offer in offers:
            amount = offer.price_quoted if offer.price_quoted is not None else offer.amount
            try:
                ok = await self.catalog.reserve_budget(offer.campaign_id, offer.id, amount)
            except CampaignNotFoundError:
                logger.warning("budget_restore_unknown_campaign", offer_id=offer.id, campaign_id=offer.campaign_id)
                continue
            if not ok:
                logger.warning("budget_restore_over_budget", offer_id=offer.id, campaign_id=offer.campaign_id)
                continue
            restored += 1

        logger.info("budget_reservations_restored", offers=restored)
        return restored

    # =========================================================================
    # Creation and proofs
    # =========================================================================

    async def create_offer(
        self,
        submission: OfferSubmission,
        offer_id: str | None = None,
    ) -> OfferModel:
        """
        Create an offer and submit the proofs it carries.

        Idempotent on the offer id: a repeat returns the stored offer and
        does not resubmit proofs.

        Raises:
            CampaignNotFoundError: If the campaign is unknown
            UnexpectedRequirementError: If a proof names a requirement the
                campaign does not have
        """
        offer_id = submission.offer_id or offer_id or uuid.uuid4().hex
        campaign = await self.catalog.get_campaign(submission.campaign_id)

        unexpected = set(submission.proofs_by_requirement) - set(campaign.requirements)
        if unexpected:
            raise UnexpectedRequirementError(offer_id, sorted(unexpected)[0], list(campaign.requirements))

        created = False
        try:
            async with self.locks.hold(offer_id):
                async with self.transaction() as session:
                    existing = await session.get(OfferModel, offer_id)
                    if existing is None:
                        offer = OfferModel(
                            id=offer_id,
                            campaign_id=campaign.campaign_id,
                            amount=submission.amount,
                            recipient=submission.recipient,
                            requirements={
                                kind: req.model_dump() for kind, req in campaign.requirements.items()
                            },
                            proofs={},
                            verified_kinds=[],
                            status=OfferStatus.CREATED,
                        )
                        session.add(offer)
                        if not campaign.requirements:
                            # Nothing to prove
                            self.apply(offer, S.PROOFS_SUBMITTED)
                            self.apply(offer, S.VERIFIED)
                        created = True
        except IntegrityError:
            # Another writer inserted the same id first
            created = False

        if not created:
            logger.info("offer_create_duplicate", offer_id=offer_id)
            return await self.get_offer(offer_id)

        logger.info(
            "offer_created",
            offer_id=offer_id,
            campaign_id=campaign.campaign_id,
            amount=submission.amount,
            proofs=sorted(submission.proofs_by_requirement),
        )

        for kind, package in submission.proofs_by_requirement.items():
            outcome = await self.submit_proof(offer_id, kind, package)
            if not outcome.result.valid:
                break

        return await self.get_offer(offer_id)

    async def submit_proof(
        self,
        offer_id: str,
        kind: str,
        package: ProofPackage,
    ) -> SubmissionOutcome:
        """
        Verify and store a proof for one requirement.

        A valid proof supersedes any earlier one for the same requirement;
        an invalid one rejects the offer.

        Raises:
            StaleSubmissionError: If the offer no longer collects proofs
            UnexpectedRequirementError: If ``kind`` is not a requirement
            VerificationKeyNotFoundError: If the circuit's key is missing
        """
        async with self.locks.hold(offer_id):
            async with self.transaction() as session:
                offer = await self.load_for_update(session, offer_id)
                status = OfferStatus(offer.status)
                if status not in PROOF_OPEN_STATES:
                    raise StaleSubmissionError(offer_id, status.value)
                if kind not in offer.requirements:
                    raise UnexpectedRequirementError(offer_id, kind, list(offer.requirements))
                requirement = _requirement_adapter.validate_python(offer.requirements[kind])

            # Verification runs off the event loop, outside any transaction,
            # with the offer lock still held.
            result = await self.verifier.verify_async(package, requirement)

            async with self.transaction() as session:
                offer = await self.load_for_update(session, offer_id)
                status = OfferStatus(offer.status)

                if not result.valid:
                    self.apply(
                        offer,
                        S.REJECTED,
                        reason=result.reason,
                        detail=f"{kind}: {result.detail}",
                    )
                else:
                    offer.proofs = {**offer.proofs, kind: package.to_wire()}
                    offer.verified_kinds = sorted({*offer.verified_kinds, kind})

                    if status == S.CREATED:
                        self.apply(offer, S.PROOFS_SUBMITTED)
                        status = S.PROOFS_SUBMITTED
                    if status == S.PROOFS_SUBMITTED and set(offer.verified_kinds) >= set(offer.requirements):
                        self.apply(offer, S.VERIFIED)

                logger.info(
                    "offer_proof_submitted",
                    offer_id=offer_id,
                    kind=kind,
                    circuit=package.circuit_name,
                    valid=result.valid,
                    status=OfferStatus(offer.status).value,
                )

        return SubmissionOutcome(offer=offer, result=result)

    # =========================================================================
    # Decision
    # =========================================================================

    def _require_decidable(self, offer: OfferModel, target: OfferStatus) -> OfferStatus:
        status = OfferStatus(offer.status)
        if status in (S.CREATED, S.PROOFS_SUBMITTED):
            raise MissingRequiredProofError(offer.id, status.value, target.value)
        if status not in (S.VERIFIED, S.DECISION_PENDING):
            raise InvalidTransitionError(offer.id, status.value, target.value)
        return status

    async def begin_decision(self, offer_id: str) -> DecisionContext:
        """
        Move a verified offer to decision_pending and build the oracle's input.

        Calling again while the decision is pending returns a fresh context.
        """
        async with self.locked(offer_id) as (session, offer):
            status = self._require_decidable(offer, S.DECISION_PENDING)
            if status == S.VERIFIED:
                self.apply(offer, S.DECISION_PENDING)

        campaign = await self.catalog.get_campaign(offer.campaign_id)
        return DecisionContext(
            offer_id=offer.id,
            campaign=campaign,
            amount=offer.amount,
            budget_remaining=await self.catalog.budget_remaining(offer.campaign_id),
            verified_kinds=list(offer.verified_kinds),
            recipient=offer.recipient,
        )

    async def evaluate(self, offer_id: str, oracle: DecisionOracle) -> OfferModel:
        """Consult the oracle (outside the offer lock) and record its decision."""
        context = await self.begin_decision(offer_id)
        decision = await oracle.decide(context)
        return await self.record_decision(offer_id, decision)

    async def record_decision(self, offer_id: str, decision: Decision) -> OfferModel:
        """
        Apply an accept/reject decision.

        Accepting reserves the quoted price against the campaign budget; a
        refused reservation rejects the offer with BudgetExhausted.
        """
        target = S.ACCEPTED if decision.accept else S.REJECTED
        async with self.locked(offer_id) as (session, offer):
            status = self._require_decidable(offer, target)
            if status == S.VERIFIED:
                self.apply(offer, S.DECISION_PENDING)

            offer.decision_reasoning = decision.reasoning or None

            if not decision.accept:
                self.apply(
                    offer,
                    S.REJECTED,
                    reason=RejectionReason.DECISION_REJECTED,
                    detail=decision.reasoning or "Offer declined",
                )
                return offer

            price = decision.price if decision.price is not None else offer.amount
            reserved = await self.catalog.reserve_budget(offer.campaign_id, offer.id, price)
            if not reserved:
                self.apply(
                    offer,
                    S.REJECTED,
                    reason=RejectionReason.BUDGET_EXHAUSTED,
                    detail=f"Campaign {offer.campaign_id} cannot cover price {price}",
                )
                return offer

            offer.price_quoted = price
            offer.budget_reserved = True
            self.apply(offer, S.ACCEPTED, detail=f"Accepted at {price}")

        return offer

    # =========================================================================
    # Funding and settlement requests
    # =========================================================================

    async def request_funding(self, offer_id: str) -> EscrowRecordModel:
        """
        Create the offer's escrow record and funding task.

        A second call finds the existing record and returns it unchanged.
        The record's primary key is the offer id, so two writers cannot
        both insert one.
        """
        try:
            async with self.locked(offer_id) as (session, offer):
                existing = await session.get(EscrowRecordModel, offer_id)
                if existing is not None:
                    logger.info("funding_request_duplicate", offer_id=offer_id)
                    return existing

                status = OfferStatus(offer.status)
                if status != S.ACCEPTED:
                    raise InvalidTransitionError(offer_id, status.value, S.FUNDING_REQUESTED.value)

                record = EscrowRecordModel(
                    offer_id=offer_id,
                    amount=offer.price_quoted or offer.amount,
                    destination=escrow_destination(offer_id),
                    status=EscrowStatus.PENDING,
                )
                session.add(record)
                session.add(
                    SettlementTaskModel(
                        offer_id=offer_id,
                        kind=LedgerRequestKind.FUND,
                        attempt_count=0,
                        max_attempts=settings.escrow.max_attempts,
                        next_retry_at=datetime.now(UTC),
                    )
                )
                self.apply(offer, S.FUNDING_REQUESTED)
                await session.flush()
        except IntegrityError:
            logger.info("funding_request_duplicate", offer_id=offer_id, source="constraint")
            existing = await self.get_escrow(offer_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "funding_requested",
            offer_id=offer_id,
            amount=record.amount,
            destination=record.destination,
        )
        return record

    async def request_settlement(self, offer_id: str) -> EscrowRecordModel:
        """Queue the settlement of a funded offer. Repeats are no-ops."""
        try:
            async with self.locked(offer_id) as (session, offer):
                record = await session.get(EscrowRecordModel, offer_id)
                if record is not None and record.settlement_status is not None:
                    logger.info("settlement_request_duplicate", offer_id=offer_id)
                    return record

                status = OfferStatus(offer.status)
                if status != S.FUNDED or record is None:
                    raise InvalidTransitionError(offer_id, status.value, S.SETTLEMENT_REQUESTED.value)

                record.settlement_status = EscrowStatus.PENDING
                session.add(
                    SettlementTaskModel(
                        offer_id=offer_id,
                        kind=LedgerRequestKind.SETTLE,
                        attempt_count=0,
                        max_attempts=settings.escrow.max_attempts,
                        next_retry_at=datetime.now(UTC),
                    )
                )
                self.apply(offer, S.SETTLEMENT_REQUESTED)
                await session.flush()
        except IntegrityError:
            logger.info("settlement_request_duplicate", offer_id=offer_id, source="constraint")
            existing = await self.get_escrow(offer_id)
            if existing is None:
                raise
            return existing

        logger.info("settlement_requested", offer_id=offer_id, amount=record.amount)
        return record

    async def record_ledger_handle(
        self,
        offer_id: str,
        kind: LedgerRequestKind,
        ledger_handle: str,
    ) -> None:
        """Persist the handle returned by a ledger submission."""
        async with self.locked(offer_id) as (session, offer):
            record = await session.get(EscrowRecordModel, offer_id)
            if record is None:
                raise InvalidTransitionError(offer_id, OfferStatus(offer.status).value, S.FUNDING_REQUESTED.value)
            if kind == LedgerRequestKind.FUND:
                record.ledger_handle = ledger_handle
                offer.funding_reference = ledger_handle
            else:
                record.settlement_handle = ledger_handle
                offer.settlement_reference = ledger_handle

    # =========================================================================
    # Ledger callbacks
    # =========================================================================

    async def on_funding_confirmed(self, offer_id: str, ledger_handle: str) -> OfferModel:
        """
        Mark the offer funded.

        Duplicates are ignored. A confirmation that arrives after the offer
        expired or was marked failed still corrects it to funded.
        """
        async with self.locked(offer_id) as (session, offer):
            record = await session.get(EscrowRecordModel, offer_id)
            if record is None:
                logger.warning("funding_confirmation_without_record", offer_id=offer_id)
                return offer

            record.set_leg(LedgerRequestKind.FUND, EscrowStatus.CONFIRMED, ledger_handle)
            record.last_error = None
            offer.funding_reference = ledger_handle
            await self._delete_task(session, offer_id, LedgerRequestKind.FUND)

            status = OfferStatus(offer.status)
            if status in FUNDED_OR_LATER:
                logger.debug("funding_confirmation_duplicate", offer_id=offer_id)
                return offer

            correction = status in (S.EXPIRED, S.FUNDING_FAILED)
            if correction:
                logger.warning(
                    "offer_late_funding_corrected",
                    offer_id=offer_id,
                    from_status=status.value,
                )
                if not offer.budget_reserved:
                    # Funds are already in escrow; hold budget again if possible
                    offer.budget_reserved = await self.catalog.reserve_budget(
                        offer.campaign_id, offer.id, record.amount
                    )
            self.apply(offer, S.FUNDED, detail="Escrow funded", correction=correction)

        return offer

    async def apply_ledger_failure(
        self,
        session: AsyncSession,
        offer: OfferModel,
        kind: LedgerRequestKind,
        reason: RejectionReason,
        detail: str,
    ) -> None:
        """
        Record a permanent funding or settlement failure.

        Caller holds the offer lock and an open transaction. Confirmed legs
        win: a failure for an already funded/settled leg is ignored.
        """
        record = await session.get(EscrowRecordModel, offer.id)
        await self._delete_task(session, offer.id, kind)
        status = OfferStatus(offer.status)

        if kind == LedgerRequestKind.FUND:
            if record is not None and record.status != EscrowStatus.CONFIRMED:
                record.status = EscrowStatus.FAILED
                record.last_error = detail
            if status == S.FUNDING_REQUESTED:
                self.apply(offer, S.FUNDING_FAILED, reason=reason, detail=detail)
                await self._release_budget(offer)
            else:
                logger.info("funding_failure_ignored", offer_id=offer.id, status=status.value)
            return

        if record is not None and record.settlement_status != EscrowStatus.CONFIRMED:
            record.settlement_status = EscrowStatus.FAILED
            record.last_error = detail
        if status == S.SETTLEMENT_REQUESTED:
            self.apply(offer, S.SETTLEMENT_FAILED, reason=reason, detail=detail)
        else:
            logger.info("settlement_failure_ignored", offer_id=offer.id, status=status.value)

    async def on_funding_failed(
        self,
        offer_id: str,
        reason: RejectionReason = RejectionReason.FUNDING_REJECTED,
        detail: str = "Ledger rejected funding",
    ) -> OfferModel:
        async with self.locked(offer_id) as (session, offer):
            await self.apply_ledger_failure(session, offer, LedgerRequestKind.FUND, reason, detail)
        return offer

    async def on_settlement_confirmed(self, offer_id: str, ledger_handle: str) -> OfferModel:
        """Mark the offer settled; a late confirmation corrects settlement_failed."""
        async with self.locked(offer_id) as (session, offer):
            record = await session.get(EscrowRecordModel, offer_id)
            status = OfferStatus(offer.status)

            if record is None or status not in (S.SETTLEMENT_REQUESTED, S.SETTLEMENT_FAILED, S.SETTLED):
                logger.warning(
                    "settlement_confirmation_ignored",
                    offer_id=offer_id,
                    status=status.value,
                )
                return offer

            record.set_leg(LedgerRequestKind.SETTLE, EscrowStatus.CONFIRMED, ledger_handle)
            record.last_error = None
            offer.settlement_reference = ledger_handle
            await self._delete_task(session, offer_id, LedgerRequestKind.SETTLE)

            if status == S.SETTLED:
                logger.debug("settlement_confirmation_duplicate", offer_id=offer_id)
                return offer

            correction = status == S.SETTLEMENT_FAILED
            if correction:
                logger.warning("offer_late_settlement_corrected", offer_id=offer_id)
            self.apply(offer, S.SETTLED, detail="Settled", correction=correction)

        return offer

    async def on_settlement_failed(
        self,
        offer_id: str,
        reason: RejectionReason = RejectionReason.SETTLEMENT_REJECTED,
        detail: str = "Ledger rejected settlement",
    ) -> OfferModel:
        async with self.locked(offer_id) as (session, offer):
            await self.apply_ledger_failure(session, offer, LedgerRequestKind.SETTLE, reason, detail)
        return offer

    # =========================================================================
    # Expiry
    # =========================================================================

    async def expire(self, offer_id: str, detail: str | None = None) -> OfferModel:
        """
        Expire an offer that has not been funded.

        A funding task whose request already reached the ledger is kept so
        that a late confirmation can still correct the offer to funded. One
        that never produced a ledger handle is dropped.
        """
        async with self.locked(offer_id) as (session, offer):
            self.apply(
                offer,
                S.EXPIRED,
                reason=RejectionReason.EXPIRED,
                detail=detail or "Offer expired",
            )
            await self._release_budget(offer)

            record = await session.get(EscrowRecordModel, offer_id)
            if record is not None and record.ledger_handle is None:
                await self._delete_task(session, offer_id, LedgerRequestKind.FUND)
                logger.info("funding_task_dropped", offer_id=offer_id, reason="expired_before_submission")
        return offer

    async def expire_stale(self, now: datetime | None = None) -> list[str]:
        """Expire pre-accepted offers older than the configured lifetime."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(seconds=settings.escrow.offer_expiry_seconds)

        async with self.transaction() as session:
            result = await session.execute(
                select(OfferModel.id).where(
                    OfferModel.status.in_(list(PRE_ACCEPTED_STATES)),
                    OfferModel.created_at < cutoff,
                )
            )
            candidates = list(result.scalars().all())

        expired = []
        for offer_id in candidates:
            try:
                await self.expire(offer_id, detail="Offer expired before acceptance")
            except InvalidTransitionError:
                # Moved on since the scan
                continue
            expired.append(offer_id)

        if expired:
            logger.info("offers_expired", count=len(expired))
        return expired
