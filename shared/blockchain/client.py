"""
Ledger Client Interface
=======================

Abstract base class and models for escrow ledger operations.

The ledger holds funds in escrow per offer and pays them out on settlement.
Every request carries the offer id as its idempotency key: submitting the
same ``(offer_id, kind)`` twice must never move funds twice.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from shared.config import BlockchainMode, settings
from shared.logging import get_logger


logger = get_logger(__name__)


class LedgerRequestKind(str, Enum):
    """Escrow operations."""

    FUND = "fund"
    SETTLE = "settle"


class LedgerStatus(str, Enum):
    """Status of a submitted ledger request."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Payout(BaseModel):
    """One leg of a settlement."""

    destination: str
    amount: int = Field(..., ge=0)


class LedgerRequest(BaseModel):
    """Funding or settlement request."""

    offer_id: str = Field(..., description="Idempotency key")
    kind: LedgerRequestKind
    amount: int = Field(..., gt=0, description="Amount in minor units")
    destination: str = Field(..., description="Escrow account")
    payouts: list[Payout] = Field(default_factory=list)

    @property
    def idempotency_key(self) -> str:
        return f"{self.offer_id}:{self.kind.value}"


class LedgerReceipt(BaseModel):
    """Handle returned immediately on submission."""

    offer_id: str
    kind: LedgerRequestKind
    ledger_handle: str
    status: LedgerStatus = LedgerStatus.PENDING
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LedgerConfirmation(BaseModel):
    """Final outcome of a ledger request (poll result or webhook body)."""

    offer_id: str
    kind: LedgerRequestKind = LedgerRequestKind.FUND
    status: LedgerStatus
    ledger_handle: str
    error: str | None = None
    confirmed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LedgerError(Exception):
    """Transport or protocol failure talking to the ledger."""


class LedgerRejectedError(LedgerError):
    """
    The ledger refused the request (insufficient balance, invalid recipient).

    Permanent: resubmitting the same request will be refused again.
    """

    def __init__(self, offer_id: str, kind: LedgerRequestKind, reason: str) -> None:
        super().__init__(f"Ledger rejected {kind.value} for offer {offer_id}: {reason}")
        self.offer_id = offer_id
        self.kind = kind
        self.reason = reason


class LedgerClient(ABC):
    """
    Abstract base class for ledger clients.

    Implements the Strategy pattern for different ledger modes.
    """

    @property
    @abstractmethod
    def mode(self) -> BlockchainMode:
        """Get the ledger mode."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the ledger network."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the ledger network."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger health."""
        ...

    @abstractmethod
    async def submit(self, request: LedgerRequest) -> LedgerReceipt:
        """
        Submit a funding or settlement request.

        Resubmitting the same ``(offer_id, kind)`` returns the original
        receipt without creating a second transfer.

        Args:
            request: The ledger request

        Returns:
            LedgerReceipt with a pending handle

        Raises:
            LedgerRejectedError: If the ledger refuses the request
        """
        ...

    @abstractmethod
    async def wait_for_confirmation(self, ledger_handle: str) -> LedgerConfirmation:
        """
        Block until the request behind ``ledger_handle`` is final.

        Callers bound the wait with ``asyncio.wait_for``.

        Raises:
            LedgerError: If the handle is unknown
        """
        ...

    @abstractmethod
    async def get_status(self, ledger_handle: str) -> LedgerStatus | None:
        """
        Current status of a handle.

        Returns:
            LedgerStatus or None if the handle is unknown
        """
        ...


# Global client instance
_client: LedgerClient | None = None


def get_ledger_client() -> LedgerClient:
    """
    Get the configured ledger client instance.

    Returns:
        LedgerClient instance based on settings
    """
    global _client

    if _client is None:
        mode = settings.blockchain.mode

        if mode == BlockchainMode.MOCK:
            from shared.blockchain.mock import MockLedgerClient

            _client = MockLedgerClient()
        elif mode in (BlockchainMode.TESTNET, BlockchainMode.MAINNET):
            raise NotImplementedError(
                f"Ledger mode '{mode}' has no client in this build. "
                "Use BLOCKCHAIN_MODE=mock for development."
            )
        else:
            raise ValueError(f"Unknown ledger mode: {mode}")

        logger.info(
            "ledger_client_initialized",
            mode=mode.value,
        )

    return _client


def set_ledger_client(client: LedgerClient) -> None:
    """
    Set a custom ledger client.

    Args:
        client: LedgerClient instance
    """
    global _client
    _client = client
    logger.info(
        "ledger_client_set",
        mode=client.mode.value,
    )


def reset_ledger_client() -> None:
    """Reset the client to be re-initialized."""
    global _client
    _client = None
