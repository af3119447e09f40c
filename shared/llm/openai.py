"""
OpenAI Provider
===============

OpenAI-compatible chat completions (OpenAI itself, or any endpoint that
speaks the same API such as Venice, selected with ``OPENAI_BASE_URL``).

Version: 0.1.0
"""

import time
from typing import Any

import openai
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import settings
from shared.llm.provider import LLMMessage, LLMProvider, LLMResponse, LLMUsage
from shared.logging import get_logger


logger = get_logger(__name__)


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible provider."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key or settings.llm.openai.api_key.get_secret_value()
        self._model = model or settings.llm.openai.model
        self._base_url = base_url or settings.llm.openai.base_url

        if not self._api_key:
            raise ValueError("OpenAI API key not configured")

        self._client = openai.AsyncOpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=settings.llm.timeout_seconds,
        )

        logger.debug(
            "openai_provider_initialized",
            model=self._model,
            base_url=self._base_url,
        )

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    @retry(
        retry=retry_if_exception_type((openai.RateLimitError, openai.APIConnectionError)),
        stop=stop_after_attempt(settings.llm.max_retries),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "openai_retry",
            attempt=retry_state.attempt_number,
        ),
    )
    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        start_time = time.perf_counter()

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [msg.to_dict() for msg in messages],
            "temperature": temperature if temperature is not None else settings.llm.temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.AuthenticationError as e:
            logger.error("openai_auth_error", error=str(e))
            raise
        except openai.APIError as e:
            logger.error("openai_error", error=str(e), error_type=type(e).__name__)
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        choice = response.choices[0]
        usage = LLMUsage(
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        logger.debug(
            "openai_completion",
            model=self._model,
            tokens=usage.total_tokens,
            latency_ms=round(latency_ms, 2),
        )

        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            provider=self.name,
            usage=usage,
            finish_reason=choice.finish_reason,
            latency_ms=latency_ms,
        )

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self._api_key else "unconfigured",
            "provider": self.name,
            "model": self._model,
            "base_url": self._base_url,
        }
