"""
Common Models
=============

Response envelopes shared by every endpoint.

Version: 0.1.0
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body returned for every handled error."""

    success: bool = False
    error: str
    detail: str | None = None
    status_code: int


class HealthResponse(BaseModel):
    """Service health check response."""

    status: str = "healthy"
    service: str
    version: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    components: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        if self.status != "healthy":
            return False
        return all(c.get("status") == "healthy" for c in self.components.values())
