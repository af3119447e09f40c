"""
Settlement Queue
================

Durable retry and recovery for ledger work.

Each pending funding or settlement is a row in ``settlement_tasks``. An
attempt that times out bumps the row's attempt count and schedules the next
try with exponential backoff:

    delay(n) = min(base * 2 ** (n - 1), max)

Once ``attempt_count`` reaches ``max_attempts`` (the first attempt counts)
the row is deleted and the offer moves to funding_failed or
settlement_failed with ``RetryExhausted``, in the same transaction. Because
the rows live in the database, a restarted process picks up where the old
one stopped, and ledger idempotency keeps it from paying twice.

Version: 0.1.0
"""

import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy import select

from services.offers.models import OfferModel, OfferStatus, SettlementTaskModel
from services.offers.services.escrow import AttemptOutcome, EscrowAttempt, EscrowGateway
from services.offers.services.state_machine import OfferStateMachine
from shared.blockchain import LedgerRequestKind
from shared.config import settings
from shared.logging import get_logger
from shared.models.rejections import RejectionReason


logger = get_logger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Seconds to wait after the ``attempt``-th failed try (1-based)."""
    if attempt < 1:
        return 0.0
    return min(base * 2 ** (attempt - 1), maximum)


class SettlementQueue:
    """
    Scheduler over the durable task table.

    Usage:
        queue = SettlementQueue(state_machine, gateway)
        await queue.dispatch(offer_id, LedgerRequestKind.FUND)
        queue.start()   # background retries
        ...
        await queue.stop()
    """

    def __init__(
        self,
        state_machine: OfferStateMachine,
        gateway: EscrowGateway,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        scan_interval_seconds: float | None = None,
    ) -> None:
        self.state_machine = state_machine
        self.gateway = gateway
        self.backoff_base_seconds = (
            settings.escrow.backoff_base_seconds if backoff_base_seconds is None else backoff_base_seconds
        )
        self.backoff_max_seconds = (
            settings.escrow.backoff_max_seconds if backoff_max_seconds is None else backoff_max_seconds
        )
        self.scan_interval_seconds = scan_interval_seconds or settings.escrow.scan_interval_seconds

        self._in_flight: set[tuple[str, LedgerRequestKind]] = set()
        self._stop = asyncio.Event()
        self._runner: asyncio.Task[None] | None = None

    # =========================================================================
    # Attempts
    # =========================================================================

    async def dispatch(
        self,
        offer_id: str,
        kind: LedgerRequestKind,
        now: datetime | None = None,
    ) -> EscrowAttempt:
        """Run one attempt for a task now and record its outcome."""
        key = (offer_id, kind)
        if key in self._in_flight:
            logger.debug("settlement_task_in_flight", offer_id=offer_id, kind=kind.value)
            return EscrowAttempt(offer_id, kind, AttemptOutcome.TIMEOUT, error="attempt already in flight")

        self._in_flight.add(key)
        try:
            attempt = await self.gateway.attempt(offer_id, kind)
            if attempt.outcome == AttemptOutcome.TIMEOUT:
                await self._record_timeout(attempt, now)
            return attempt
        finally:
            self._in_flight.discard(key)

    async def _record_timeout(self, attempt: EscrowAttempt, now: datetime | None = None) -> None:
        now = now or datetime.now(UTC)
        machine = self.state_machine

        async with machine.locked(attempt.offer_id) as (session, offer):
            result = await session.execute(
                select(SettlementTaskModel).where(
                    SettlementTaskModel.offer_id == attempt.offer_id,
                    SettlementTaskModel.kind == attempt.kind,
                )
            )
            task = result.scalar_one_or_none()
            if task is None:
                # Confirmed or failed while we were waiting
                return

            task.attempt_count += 1
            task.last_error = attempt.error

            if task.exhausted:
                logger.warning(
                    "settlement_task_exhausted",
                    offer_id=attempt.offer_id,
                    kind=attempt.kind.value,
                    attempts=task.attempt_count,
                    last_error=attempt.error,
                )
                await machine.apply_ledger_failure(
                    session,
                    offer,
                    attempt.kind,
                    RejectionReason.RETRY_EXHAUSTED,
                    attempt.error or "Ledger did not confirm",
                )
                return

            delay = backoff_delay(task.attempt_count, self.backoff_base_seconds, self.backoff_max_seconds)
            task.next_retry_at = now + timedelta(seconds=delay)
            logger.info(
                "settlement_task_rescheduled",
                offer_id=attempt.offer_id,
                kind=attempt.kind.value,
                attempt=task.attempt_count,
                max_attempts=task.max_attempts,
                delay_seconds=delay,
            )

    async def run_due(self, now: datetime | None = None) -> list[EscrowAttempt]:
        """Attempt every task whose retry time has passed, concurrently across offers."""
        now = now or datetime.now(UTC)
        async with self.state_machine.transaction() as session:
            result = await session.execute(
                select(SettlementTaskModel.offer_id, SettlementTaskModel.kind)
                .where(SettlementTaskModel.next_retry_at <= now)
                .order_by(SettlementTaskModel.next_retry_at)
            )
            due = [(row.offer_id, LedgerRequestKind(row.kind)) for row in result.all()]

        due = [key for key in due if key not in self._in_flight]
        if not due:
            return []

        logger.debug("settlement_tasks_due", count=len(due))
        results = await asyncio.gather(
            *(self.dispatch(offer_id, kind, now) for offer_id, kind in due),
            return_exceptions=True,
        )

        attempts = []
        for (offer_id, kind), outcome in zip(due, results, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "settlement_task_error",
                    offer_id=offer_id,
                    kind=kind.value,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue
            attempts.append(outcome)
        return attempts

    # =========================================================================
    # Scheduler
    # =========================================================================

    async def run_forever(self) -> None:
        """Scan for due tasks and stale offers until stopped."""
        logger.info("settlement_queue_started", scan_interval_seconds=self.scan_interval_seconds)
        while not self._stop.is_set():
            try:
                await self.run_due()
                await self.state_machine.expire_stale()
            except Exception as e:
                logger.error("settlement_queue_scan_failed", error=str(e), error_type=type(e).__name__)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.scan_interval_seconds)
            except TimeoutError:
                continue
        logger.info("settlement_queue_stopped")

    def start(self) -> None:
        if self._runner is None or self._runner.done():
            self._stop.clear()
            self._runner = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        self._stop.set()
        if self._runner is not None:
            await self._runner
            self._runner = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    # =========================================================================
    # Admin views
    # =========================================================================

    async def list_pending(self) -> list[SettlementTaskModel]:
        async with self.state_machine.transaction() as session:
            result = await session.execute(
                select(SettlementTaskModel).order_by(SettlementTaskModel.next_retry_at)
            )
            return list(result.scalars().all())

    async def failed_offers(self, limit: int = 100) -> list[OfferModel]:
        async with self.state_machine.transaction() as session:
            result = await session.execute(
                select(OfferModel)
                .where(OfferModel.status.in_([OfferStatus.FUNDING_FAILED, OfferStatus.SETTLEMENT_FAILED]))
                .order_by(OfferModel.updated_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
