"""
ZK-SNARK Integration Module
===========================

Circuit metadata, field hashing and campaign-aware proof verification.

Usage:
    from shared.zk import ProofPackage, ProofVerifier, RangeRequirement

    verifier = ProofVerifier()
    result = verifier.verify(
        ProofPackage.model_validate(payload),
        RangeRequirement(min=25, max=40),
    )
    if not result.valid:
        print(result.reason)

Version: 1.0.0
"""

from shared.zk.circuits import (
    CircuitKind,
    CircuitRegistry,
    CircuitSpec,
    UnknownCircuitError,
    default_registry,
)
from shared.zk.hashing import (
    FIELD_PRIME,
    PADDING_SENTINEL,
    FieldHasher,
    PaddingSentinelCollisionError,
    hash_and_pad,
    hash_to_field,
    to_field_element,
)
from shared.zk.models import (
    CampaignRequirement,
    ProofPackage,
    RangeRequirement,
    SetRequirement,
    VerificationResult,
    ZKProof,
)
from shared.zk.verifier import (
    ProofVerifier,
    SnarkjsVerificationPrimitive,
    VerificationKeyNotFoundError,
    VerificationKeyStore,
    VerificationPrimitive,
)


__all__ = [
    # Circuits
    "CircuitKind",
    "CircuitRegistry",
    "CircuitSpec",
    "UnknownCircuitError",
    "default_registry",
    # Hashing
    "FIELD_PRIME",
    "PADDING_SENTINEL",
    "FieldHasher",
    "PaddingSentinelCollisionError",
    "hash_and_pad",
    "hash_to_field",
    "to_field_element",
    # Verifier
    "ProofVerifier",
    "SnarkjsVerificationPrimitive",
    "VerificationKeyNotFoundError",
    "VerificationKeyStore",
    "VerificationPrimitive",
    # Models
    "CampaignRequirement",
    "ProofPackage",
    "RangeRequirement",
    "SetRequirement",
    "VerificationResult",
    "ZKProof",
]
