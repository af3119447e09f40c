"""
Mock Ledger Client
==================

In-memory mock implementation for development and testing.

Version: 0.1.0
"""

import asyncio
import hashlib
import uuid
from typing import Any

from shared.blockchain.client import (
    LedgerClient,
    LedgerConfirmation,
    LedgerError,
    LedgerReceipt,
    LedgerRejectedError,
    LedgerRequest,
    LedgerRequestKind,
    LedgerStatus,
)
from shared.config import BlockchainMode
from shared.logging import get_logger


logger = get_logger(__name__)


class _PendingTransfer:
    """Book-keeping for one submitted request."""

    def __init__(self, request: LedgerRequest, receipt: LedgerReceipt) -> None:
        self.request = request
        self.receipt = receipt
        self.confirmation: LedgerConfirmation | None = None
        self.done = asyncio.Event()


class MockLedgerClient(LedgerClient):
    """
    In-memory mock ledger client.

    Simulates an escrow ledger for development without requiring actual
    network infrastructure. Data is stored in memory and lost on restart.

    Behaviour knobs for tests:
        auto_confirm: confirm every accepted submission immediately
        balance: funding source balance; ``None`` means unlimited
        hold(offer_id): keep that offer's requests pending until released
        reject_destination(dest): refuse transfers to ``dest``
    """

    def __init__(self, auto_confirm: bool = True, balance: int | None = None) -> None:
        """Initialize mock client with in-memory storage."""
        self._connected = False
        self.auto_confirm = auto_confirm
        self.balance = balance

        # In-memory storage
        self._transfers: dict[str, _PendingTransfer] = {}
        self._by_key: dict[str, str] = {}

        self._held_offers: set[str] = set()
        self._rejected_destinations: set[str] = set()

        self.submission_count = 0
        self.duplicate_submissions = 0

        logger.debug("mock_ledger_initialized")

    @property
    def mode(self) -> BlockchainMode:
        return BlockchainMode.MOCK

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_ledger_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        self._connected = False
        logger.info("mock_ledger_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock ledger health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            **self.get_stats(),
        }

    def _generate_handle(self) -> str:
        """Generate a mock transaction signature."""
        return "mock_" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()[:40]

    # =========================================================================
    # Ledger Operations
    # =========================================================================

    async def submit(self, request: LedgerRequest) -> LedgerReceipt:
        """Submit a request; duplicates return the original receipt."""
        existing = self._by_key.get(request.idempotency_key)
        if existing is not None:
            self.duplicate_submissions += 1
            logger.debug(
                "mock_ledger_duplicate_submission",
                offer_id=request.offer_id,
                kind=request.kind.value,
                ledger_handle=existing,
            )
            return self._transfers[existing].receipt

        destinations = [request.destination, *(p.destination for p in request.payouts)]
        refused = next((d for d in destinations if d in self._rejected_destinations), None)
        if refused is not None:
            raise LedgerRejectedError(request.offer_id, request.kind, f"invalid recipient {refused}")

        if request.kind == LedgerRequestKind.FUND and self.balance is not None:
            if request.amount > self.balance:
                raise LedgerRejectedError(
                    request.offer_id,
                    request.kind,
                    f"insufficient balance: need {request.amount}, have {self.balance}",
                )
            self.balance -= request.amount

        handle = self._generate_handle()
        receipt = LedgerReceipt(
            offer_id=request.offer_id,
            kind=request.kind,
            ledger_handle=handle,
        )
        self._transfers[handle] = _PendingTransfer(request, receipt)
        self._by_key[request.idempotency_key] = handle
        self.submission_count += 1

        logger.info(
            "mock_ledger_submitted",
            offer_id=request.offer_id,
            kind=request.kind.value,
            amount=request.amount,
            ledger_handle=handle,
        )

        if self.auto_confirm and request.offer_id not in self._held_offers:
            self._finish(handle, LedgerStatus.CONFIRMED)

        return receipt

    async def wait_for_confirmation(self, ledger_handle: str) -> LedgerConfirmation:
        transfer = self._transfers.get(ledger_handle)
        if transfer is None:
            raise LedgerError(f"Unknown ledger handle: {ledger_handle}")

        await transfer.done.wait()
        if transfer.confirmation is None:
            raise LedgerError(f"Ledger handle {ledger_handle} finished without an outcome")
        return transfer.confirmation

    async def get_status(self, ledger_handle: str) -> LedgerStatus | None:
        transfer = self._transfers.get(ledger_handle)
        if transfer is None:
            return None
        if transfer.confirmation is None:
            return LedgerStatus.PENDING
        return transfer.confirmation.status

    def _finish(self, ledger_handle: str, status: LedgerStatus, error: str | None = None) -> LedgerConfirmation:
        transfer = self._transfers[ledger_handle]
        if transfer.confirmation is None:
            transfer.confirmation = LedgerConfirmation(
                offer_id=transfer.request.offer_id,
                kind=transfer.request.kind,
                status=status,
                ledger_handle=ledger_handle,
                error=error,
            )
            transfer.done.set()
            logger.debug(
                "mock_ledger_finished",
                ledger_handle=ledger_handle,
                status=status.value,
            )
        return transfer.confirmation

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def handle_for(self, offer_id: str, kind: LedgerRequestKind) -> str | None:
        return self._by_key.get(f"{offer_id}:{kind.value}")

    def hold(self, offer_id: str) -> None:
        """Keep requests for ``offer_id`` pending until confirmed by hand."""
        self._held_offers.add(offer_id)

    def release(self, offer_id: str) -> None:
        self._held_offers.discard(offer_id)

    def reject_destination(self, destination: str) -> None:
        self._rejected_destinations.add(destination)

    def confirm(
        self,
        offer_id: str,
        kind: LedgerRequestKind = LedgerRequestKind.FUND,
    ) -> LedgerConfirmation:
        """Confirm a pending request."""
        handle = self.handle_for(offer_id, kind)
        if handle is None:
            raise LedgerError(f"No {kind.value} request for offer {offer_id}")
        return self._finish(handle, LedgerStatus.CONFIRMED)

    def fail(
        self,
        offer_id: str,
        kind: LedgerRequestKind = LedgerRequestKind.FUND,
        error: str = "transaction failed",
    ) -> LedgerConfirmation:
        """Fail a pending request."""
        handle = self.handle_for(offer_id, kind)
        if handle is None:
            raise LedgerError(f"No {kind.value} request for offer {offer_id}")
        return self._finish(handle, LedgerStatus.FAILED, error)

    def submitted_requests(self, offer_id: str | None = None) -> list[LedgerRequest]:
        requests = [t.request for t in self._transfers.values()]
        if offer_id is not None:
            requests = [r for r in requests if r.offer_id == offer_id]
        return requests

    def clear_all(self) -> None:
        """Clear all mock data (for testing)."""
        self._transfers.clear()
        self._by_key.clear()
        self._held_offers.clear()
        self._rejected_destinations.clear()
        self.submission_count = 0
        self.duplicate_submissions = 0
        logger.debug("mock_ledger_cleared")

    def get_stats(self) -> dict[str, int]:
        """Get storage statistics."""
        pending = sum(1 for t in self._transfers.values() if t.confirmation is None)
        return {
            "submissions": self.submission_count,
            "duplicate_submissions": self.duplicate_submissions,
            "pending": pending,
            "finished": len(self._transfers) - pending,
        }
