"""
Decision Oracle
===============

Accept/price decisions for verified offers.

The state machine treats the oracle as opaque: it hands over a
``DecisionContext`` and receives a ``Decision``. Two implementations:

- ``RuleBasedDecisionOracle``: accept when the asked amount fits under the
  campaign's max price and remaining budget.
- ``LLMDecisionOracle``: asks the configured LLM provider for a JSON
  verdict and falls back to the rules when the provider fails or answers
  with something unparseable.

Version: 0.1.0
"""

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field, ValidationError

from services.offers.services.campaigns import Campaign
from shared.llm import LLMProvider, get_llm_provider
from shared.logging import get_logger


logger = get_logger(__name__)


class Decision(BaseModel):
    """Outcome of evaluating one offer."""

    accept: bool
    price: int | None = Field(default=None, gt=0, description="Price quoted; defaults to the asked amount")
    reasoning: str = ""
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    source: str = "external"


class LLMVerdict(BaseModel):
    """JSON shape the model is asked to produce."""

    decision: Literal["accept", "reject"]
    reasoning: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    price: int | None = Field(default=None, gt=0)

    def to_decision(self, source: str) -> Decision:
        return Decision(
            accept=self.decision == "accept",
            price=self.price,
            reasoning=self.reasoning,
            confidence=self.confidence,
            source=source,
        )


@dataclass
class DecisionContext:
    """Everything an oracle may look at."""

    offer_id: str
    campaign: Campaign
    amount: int
    budget_remaining: int
    verified_kinds: list[str] = field(default_factory=list)
    recipient: str | None = None


class DecisionOracle(Protocol):
    async def decide(self, context: DecisionContext) -> Decision:
        ...


class RuleBasedDecisionOracle:
    """Deterministic price and budget rule."""

    name = "rules"

    async def decide(self, context: DecisionContext) -> Decision:
        max_price = context.campaign.max_price

        if context.amount > max_price:
            return Decision(
                accept=False,
                reasoning=f"Price {context.amount} exceeds max price {max_price}",
                confidence=1.0,
                source=self.name,
            )

        if context.amount > context.budget_remaining:
            return Decision(
                accept=False,
                reasoning=f"Price {context.amount} exceeds remaining budget {context.budget_remaining}",
                confidence=1.0,
                source=self.name,
            )

        return Decision(
            accept=True,
            price=context.amount,
            reasoning=f"Price {context.amount} within max price {max_price} and budget",
            confidence=1.0,
            source=self.name,
        )


SYSTEM_PROMPT = """You are an agent working for an advertiser, evaluating offers from users \
who have proven, without revealing the underlying data, that they match the campaign's audience.

Your goal: only accept offers that are fairly priced and fit the campaign.

Accept if the price is at or below the max price AND the remaining budget covers it AND \
the offer helps the campaign goal. Otherwise reject.

Output format:
{"decision": "accept" | "reject", "reasoning": "<one or two sentences>", "confidence": <0.0-1.0>}"""


def build_prompt(context: DecisionContext) -> str:
    campaign = context.campaign
    requirements = {kind: req.model_dump() for kind, req in campaign.requirements.items()}
    return "\n".join(
        [
            "CAMPAIGN:",
            f"Name: {campaign.name or campaign.campaign_id}",
            f"Goal: {campaign.goal or 'unspecified'}",
            f"Proven requirements: {json.dumps(requirements, sort_keys=True)}",
            f"Max price: {campaign.max_price}",
            f"Budget remaining: {context.budget_remaining}",
            "",
            "OFFER:",
            f"Offer ID: {context.offer_id}",
            f"Requested price: {context.amount}",
            f"Verified requirements: {', '.join(sorted(context.verified_kinds)) or 'none'}",
            f"Over max price? {'YES' if context.amount > campaign.max_price else 'NO'}",
            f"Budget covers it? {'YES' if context.budget_remaining >= context.amount else 'NO'}",
        ]
    )


class LLMDecisionOracle:
    """
    LLM-backed oracle with a rule-based fallback.

    Usage:
        oracle = LLMDecisionOracle()
        decision = await oracle.decide(context)
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        fallback: DecisionOracle | None = None,
    ) -> None:
        self._provider = provider
        self.fallback = fallback or RuleBasedDecisionOracle()

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = get_llm_provider()
        return self._provider

    async def decide(self, context: DecisionContext) -> Decision:
        try:
            raw: dict[str, Any] = await self.provider.generate_json(
                build_prompt(context),
                system_prompt=SYSTEM_PROMPT,
            )
            decision = LLMVerdict.model_validate(raw).to_decision(source=self.provider.name)
        except ValidationError as e:
            logger.warning(
                "llm_decision_unparseable",
                offer_id=context.offer_id,
                error=str(e),
            )
            return await self.fallback.decide(context)
        except Exception as e:
            # Missing key, transport failure or non-JSON output
            logger.warning(
                "llm_decision_failed",
                offer_id=context.offer_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return await self.fallback.decide(context)

        # The model never gets to lift the price above what the user asked
        if decision.price is not None and decision.price > context.amount:
            decision = decision.model_copy(update={"price": context.amount})

        logger.info(
            "llm_decision",
            offer_id=context.offer_id,
            accept=decision.accept,
            confidence=decision.confidence,
        )
        return decision
