"""
Ledger Module
=============

Abstraction layer for escrow ledger operations.

Supports:
- Mock (development/testing)
- Testnet / Mainnet (selected by BLOCKCHAIN_MODE, client supplied by deployment)

Usage:
    from shared.blockchain import (
        get_ledger_client,
        LedgerRequest,
        LedgerRequestKind,
    )

    client = get_ledger_client()

    receipt = await client.submit(
        LedgerRequest(
            offer_id="offer-123",
            kind=LedgerRequestKind.FUND,
            amount=10_000,
            destination="escrow:...",
        )
    )
    confirmation = await client.wait_for_confirmation(receipt.ledger_handle)
"""

from shared.blockchain.client import (
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
    reset_ledger_client,
    set_ledger_client,
)
from shared.blockchain.mock import MockLedgerClient


__all__ = [
    # Client
    "LedgerClient",
    "get_ledger_client",
    "set_ledger_client",
    "reset_ledger_client",
    # Models
    "LedgerRequest",
    "LedgerRequestKind",
    "LedgerReceipt",
    "LedgerConfirmation",
    "LedgerStatus",
    "Payout",
    # Errors
    "LedgerError",
    "LedgerRejectedError",
    # Implementations
    "MockLedgerClient",
]
