"""
Offers Service
==============

Turns verified attribute proofs into escrow-funded, settled offers.

Components:
- Offer state machine (per-offer serialized lifecycle)
- Escrow gateway (ledger submission and confirmation reconciliation)
- Settlement queue (durable retry with exponential backoff)
- Decision oracle (LLM-backed accept/price with rule-based fallback)

Port: 8010
"""

__version__ = "0.1.0"
