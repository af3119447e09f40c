"""
Campaign Catalog
================

Read-only source of campaign requirements plus budget reservation.

Campaign CRUD lives elsewhere; the offer service only needs to read a
campaign's requirements and hold budget for accepted offers. A reservation
is held per offer and released when the offer expires or fails.

Version: 0.1.0
"""

import json
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field, TypeAdapter

from services.offers.errors import CampaignNotFoundError
from shared.logging import get_logger
from shared.zk.models import CampaignRequirement


logger = get_logger(__name__)


class Campaign(BaseModel):
    """Advertiser campaign as seen by the offer service."""

    campaign_id: str
    name: str = ""
    goal: str = Field(default="", description="Free-text goal handed to the decision oracle")
    requirements: dict[str, CampaignRequirement] = Field(default_factory=dict)
    max_price: int = Field(..., gt=0, description="Highest price per offer, minor units")
    total_budget: int = Field(..., ge=0)


class CampaignCatalog(Protocol):
    """What the offer state machine needs from campaign storage."""

    async def get_campaign(self, campaign_id: str) -> Campaign:
        ...

    async def budget_remaining(self, campaign_id: str) -> int:
        ...

    async def reserve_budget(self, campaign_id: str, offer_id: str, amount: int) -> bool:
        ...

    async def release_budget(self, campaign_id: str, offer_id: str) -> None:
        ...


class StaticCampaignCatalog:
    """
    In-memory catalog.

    Reservations are keyed by offer id, so reserving twice for the same
    offer holds the budget once.

    Usage:
        catalog = StaticCampaignCatalog([campaign])
        ok = await catalog.reserve_budget("cmp-1", "offer-1", 2500)
    """

    def __init__(self, campaigns: list[Campaign] | None = None) -> None:
        self._campaigns: dict[str, Campaign] = {}
        self._reservations: dict[str, dict[str, int]] = {}
        for campaign in campaigns or []:
            self.add(campaign)

    @classmethod
    def from_file(cls, path: str | Path) -> "StaticCampaignCatalog":
        """Load a JSON list of campaigns."""
        with open(path) as f:
            campaigns = TypeAdapter(list[Campaign]).validate_python(json.load(f))
        logger.info("campaign_catalog_loaded", path=str(path), campaigns=len(campaigns))
        return cls(campaigns)

    def add(self, campaign: Campaign) -> None:
        self._campaigns[campaign.campaign_id] = campaign
        self._reservations.setdefault(campaign.campaign_id, {})

    async def get_campaign(self, campaign_id: str) -> Campaign:
        try:
            return self._campaigns[campaign_id]
        except KeyError:
            raise CampaignNotFoundError(campaign_id) from None

    def reserved(self, campaign_id: str) -> int:
        return sum(self._reservations.get(campaign_id, {}).values())

    async def budget_remaining(self, campaign_id: str) -> int:
        campaign = await self.get_campaign(campaign_id)
        return campaign.total_budget - self.reserved(campaign_id)

    async def reserve_budget(self, campaign_id: str, offer_id: str, amount: int) -> bool:
        campaign = await self.get_campaign(campaign_id)
        held = self._reservations[campaign_id]

        if offer_id in held:
            return True

        remaining = campaign.total_budget - self.reserved(campaign_id)
        if amount > remaining:
            logger.info(
                "campaign_budget_exhausted",
                campaign_id=campaign_id,
                offer_id=offer_id,
                requested=amount,
                remaining=remaining,
            )
            return False

        held[offer_id] = amount
        logger.debug(
            "campaign_budget_reserved",
            campaign_id=campaign_id,
            offer_id=offer_id,
            amount=amount,
        )
        return True

    async def release_budget(self, campaign_id: str, offer_id: str) -> None:
        released = self._reservations.get(campaign_id, {}).pop(offer_id, None)
        if released is not None:
            logger.debug(
                "campaign_budget_released",
                campaign_id=campaign_id,
                offer_id=offer_id,
                amount=released,
            )
