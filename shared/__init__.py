"""
PAYATTN Shared Library
======================

Common utilities, configurations, and abstractions shared by the offer
settlement service.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - database: Async SQLAlchemy engine and session management
    - zk: Predicate circuits, field hashing and proof verification
    - blockchain: Settlement ledger interface (mock/testnet/mainnet)
    - llm: LLM provider abstraction (Claude, OpenAI-compatible)
    - models: Shared Pydantic models

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "Payattn Team"

from shared.config import settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
