"""
PAYATTN Test Suite
==================

Test organization:
- tests/unit/              - Hashing, circuits, verifier, ledger mock, LLM parsing
- tests/services/offers/   - State machine, escrow, settlement queue and HTTP routes
                             against a throwaway SQLite database

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
    pytest tests/services           # Service tests only
"""
