"""
Shared Models
=============

Pydantic models shared across Payattn services.

Models:
- Response envelopes (ErrorResponse, HealthResponse)
- Rejection taxonomy (RejectionReason)
"""

from shared.models.common import ErrorResponse, HealthResponse
from shared.models.rejections import RejectionReason

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "RejectionReason",
]
