"""
Unit tests for the LLM provider layer.
"""

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from shared.config import settings
from shared.llm import LLMMessage, LLMProvider, LLMResponse, parse_json_object
from shared.llm.claude import ClaudeProvider


class ScriptedProvider(LLMProvider):
    """Provider that replays a fixed reply and records the messages it saw."""

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.seen: list[list[LLMMessage]] = []

    @property
    def name(self) -> str:
        return "scripted"

    @property
    def model(self) -> str:
        return "scripted-1"

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.seen.append(messages)
        return LLMResponse(content=self.reply, model=self.model, provider=self.name)

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy"}


class TestParseJsonObject:
    """Tests for parse_json_object."""

    def test_plain_object(self) -> None:
        assert parse_json_object('{"decision": "accept"}') == {"decision": "accept"}

    def test_markdown_fence(self) -> None:
        text = '```json\n{"decision": "reject", "confidence": 0.9}\n```'
        assert parse_json_object(text) == {"decision": "reject", "confidence": 0.9}

    def test_bare_fence(self) -> None:
        assert parse_json_object('```\n{"a": 1}\n```') == {"a": 1}

    def test_object_inside_prose(self) -> None:
        text = 'Sure. Here is my verdict: {"decision": "accept"} Hope that helps.'
        assert parse_json_object(text) == {"decision": "accept"}

    def test_no_object(self) -> None:
        with pytest.raises(ValueError):
            parse_json_object("I would accept this offer.")

    def test_array_rejected(self) -> None:
        with pytest.raises(ValueError, match="JSON object"):
            parse_json_object("[1, 2, 3]")

    def test_broken_object(self) -> None:
        with pytest.raises(ValueError):
            parse_json_object('{"decision": accept}')


class TestGenerateJson:
    """Tests for the base-class JSON helper."""

    @pytest.mark.asyncio
    async def test_system_prompt_gets_json_instruction(self) -> None:
        provider = ScriptedProvider('{"ok": true}')

        result = await provider.generate_json("Evaluate", system_prompt="You are an agent.")

        assert result == {"ok": True}
        system, user = provider.seen[0]
        assert system.to_dict()["role"] == "system"
        assert system.content.startswith("You are an agent.")
        assert "Respond ONLY with valid JSON" in system.content
        assert user.to_dict() == {"role": "user", "content": "Evaluate"}

    @pytest.mark.asyncio
    async def test_generate_text(self) -> None:
        provider = ScriptedProvider("plain words")

        assert await provider.generate_text("hi") == "plain words"
        assert len(provider.seen[0]) == 1


class TestClaudeProvider:
    """ClaudeProvider with the Anthropic client stubbed."""

    def test_missing_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings.llm.claude, "api_key", SecretStr(""))

        with pytest.raises(ValueError, match="API key"):
            ClaudeProvider()

    @pytest.mark.asyncio
    async def test_complete(self) -> None:
        provider = ClaudeProvider(api_key="test-key", model="claude-test")
        create = AsyncMock(
            return_value=SimpleNamespace(
                content=[SimpleNamespace(text='{"decision": "accept"}')],
                usage=SimpleNamespace(input_tokens=120, output_tokens=30),
                model="claude-test",
                stop_reason="end_turn",
            )
        )
        provider._client = SimpleNamespace(messages=SimpleNamespace(create=create))

        response = await provider.complete(
            [
                LLMMessage(role="system", content="rules"),
                LLMMessage(role="user", content="offer"),
            ],
            temperature=0.0,
        )

        assert response.content == '{"decision": "accept"}'
        assert response.provider == "claude"
        assert response.usage.total_tokens == 150

        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "rules"
        assert kwargs["messages"] == [{"role": "user", "content": "offer"}]
        assert kwargs["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_health_check_makes_no_request(self) -> None:
        provider = ClaudeProvider(api_key="test-key")

        health = await provider.health_check()

        assert health["status"] == "healthy"
        assert health["provider"] == "claude"
