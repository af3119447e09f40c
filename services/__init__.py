"""
PAYATTN Services
================

Services for the PayAttn attention marketplace.

Services:
- offers: proof verification, offer lifecycle, escrow funding and settlement
"""

__all__ = [
    "offers",
]
