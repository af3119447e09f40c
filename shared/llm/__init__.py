"""
LLM Provider Module
===================

Abstraction layer for the LLM backends behind the offer decision oracle.

Supported providers:
- Anthropic Claude (primary)
- OpenAI-compatible endpoints (OpenAI, Venice, ...)

Usage:
    from shared.llm import get_llm_provider

    provider = get_llm_provider()
    verdict = await provider.generate_json(
        "Offer of 2500 for a 25-40 age match. Accept?",
        system_prompt="You evaluate advertising offers for a user.",
    )
"""

from shared.llm.provider import (
    LLMProvider,
    LLMMessage,
    LLMResponse,
    LLMUsage,
    get_llm_provider,
    parse_json_object,
    reset_llm_provider,
    set_llm_provider,
)

__all__ = [
    # Base
    "LLMProvider",
    "LLMMessage",
    "LLMResponse",
    "LLMUsage",
    "get_llm_provider",
    "set_llm_provider",
    "reset_llm_provider",
    "parse_json_object",
]
