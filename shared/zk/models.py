"""
ZK-SNARK Data Models
====================

Pydantic models for proof packages, campaign requirements and
verification outcomes.

Version: 1.0.0
"""

from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.models.rejections import RejectionReason


class ZKProof(BaseModel):
    """
    A zero-knowledge proof.

    Compatible with snarkjs Groth16 proof format. Unknown keys are kept so
    the proof reaches the verification primitive exactly as received.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    # Proof points (G1 and G2 elements)
    pi_a: list[str] = Field(..., description="Proof point A (G1)")
    pi_b: list[list[str]] = Field(..., description="Proof point B (G2)")
    pi_c: list[str] = Field(..., description="Proof point C (G1)")

    # Protocol info
    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")


class ProofPackage(BaseModel):
    """
    Proof submission as produced by the prover toolchain.

    Accepts both the wire names (``circuitName``, ``publicSignals``) and the
    Python names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    circuit_name: str = Field(..., alias="circuitName", min_length=1)
    proof: ZKProof
    public_signals: tuple[str, ...] = Field(..., alias="publicSignals")

    def to_wire(self) -> dict:
        """Serialise back to the prover's JSON shape."""
        return {
            "circuitName": self.circuit_name,
            "proof": self.proof.model_dump(),
            "publicSignals": list(self.public_signals),
        }


class RangeRequirement(BaseModel):
    """Numeric attribute must lie within [min, max] (inclusive)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["range"] = "range"
    min: int = Field(..., ge=0)
    max: int = Field(..., ge=0)
    circuit: str | None = Field(default=None, description="Pin a specific circuit name")

    @model_validator(mode="after")
    def max_must_be_gte_min(self) -> "RangeRequirement":
        if self.max < self.min:
            raise ValueError(f"max {self.max} must be >= min {self.min}")
        return self


class SetRequirement(BaseModel):
    """Categorical attribute must be one of ``allowed_values``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["set"] = "set"
    allowed_values: tuple[str, ...] = Field(..., alias="allowedValues", min_length=1)
    circuit: str | None = Field(default=None, description="Pin a specific circuit name")

    @field_validator("allowed_values")
    @classmethod
    def values_must_be_non_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if any(not item for item in v):
            raise ValueError("allowed_values must not contain empty strings")
        return v


CampaignRequirement = Annotated[
    RangeRequirement | SetRequirement,
    Field(discriminator="kind"),
]


class VerificationResult(BaseModel):
    """Result of proof verification."""

    valid: bool
    circuit_name: str
    reason: RejectionReason | None = None
    detail: str | None = None
    public_signals: list[str] = Field(default_factory=list)
    verified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    verification_time_ms: int = Field(default=0, ge=0)

    @classmethod
    def accept(cls, package: ProofPackage, elapsed_ms: int = 0) -> "VerificationResult":
        return cls(
            valid=True,
            circuit_name=package.circuit_name,
            public_signals=list(package.public_signals),
            verification_time_ms=elapsed_ms,
        )

    @classmethod
    def reject(
        cls,
        package: ProofPackage,
        reason: RejectionReason,
        detail: str,
        elapsed_ms: int = 0,
    ) -> "VerificationResult":
        return cls(
            valid=False,
            circuit_name=package.circuit_name,
            reason=reason,
            detail=detail,
            public_signals=list(package.public_signals),
            verification_time_ms=elapsed_ms,
        )
