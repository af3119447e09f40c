"""
LLM Provider Base
=================

Abstract base class and common models for LLM providers.

The offer service only ever asks a provider for one short JSON verdict,
so the surface is a single ``complete`` call plus JSON helpers.

Version: 0.1.0
"""

import json
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from shared.config import LLMProvider as LLMProviderEnum
from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


class MessageRole(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LLMMessage(BaseModel):
    """A message in the conversation."""

    role: MessageRole | Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dict for API calls."""
        return {"role": MessageRole(self.role).value, "content": self.content}


class LLMUsage(BaseModel):
    """Token usage information."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str = Field(..., description="Generated text content")
    model: str = Field(..., description="Model used for generation")
    provider: str = Field(..., description="Provider name")
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: str | None = None
    latency_ms: float = 0.0


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implements the Strategy pattern for swappable LLM backends.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion for the given messages.

        Args:
            messages: Conversation messages
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens to generate

        Returns:
            LLMResponse with generated content
        """
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check provider health."""
        ...

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=prompt))

        response = await self.complete(messages, **kwargs)
        return response.content

    async def generate_json(
        self,
        prompt: str,
        system_prompt: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Generate JSON output.

        Raises:
            ValueError: If the model did not return a JSON object
        """
        json_system = (system_prompt or "") + (
            "\n\nRespond ONLY with valid JSON. No markdown, no explanation."
        )
        text = await self.generate_text(prompt, system_prompt=json_system.strip(), **kwargs)
        return parse_json_object(text)


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse a JSON object out of model output, tolerating markdown fences.

    Raises:
        ValueError: If the text holds no JSON object
    """
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Models sometimes wrap the object in prose
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object in model output") from None
        parsed = json.loads(cleaned[start : end + 1])

    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


# Global provider instance
_provider: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Get the configured LLM provider instance.

    Uses the provider specified in settings.llm.provider.
    Creates and caches the instance on first call.
    """
    global _provider

    if _provider is None:
        provider_type = settings.llm.provider

        if provider_type == LLMProviderEnum.CLAUDE:
            from shared.llm.claude import ClaudeProvider

            _provider = ClaudeProvider()
        elif provider_type == LLMProviderEnum.OPENAI:
            from shared.llm.openai import OpenAIProvider

            _provider = OpenAIProvider()
        else:
            raise ValueError(f"Unknown LLM provider: {provider_type}")

        logger.info(
            "llm_provider_initialized",
            provider=_provider.name,
            model=_provider.model,
        )

    return _provider


def set_llm_provider(provider: LLMProvider) -> None:
    """
    Set a custom LLM provider.

    Useful for testing or custom implementations.
    """
    global _provider
    _provider = provider
    logger.info(
        "llm_provider_set",
        provider=provider.name,
        model=provider.model,
    )


def reset_llm_provider() -> None:
    """Reset the provider to be re-initialized on next access."""
    global _provider
    _provider = None
