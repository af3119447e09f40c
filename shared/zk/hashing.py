"""
Field Hashing
=============

Deterministic string -> field element mapping for categorical attributes
(country, interest, ...) used by the set-membership circuit.

    hash(value) = SHA-256(utf8(value)) as big-endian int mod FIELD_PRIME

The prover toolchain computes the same function, so the result must never
change for a given input.

Padding: set-membership public inputs are padded with ``0``. No non-empty
string is assumed to hash to ``0``. This is an assumption about SHA-256,
not a proof, so ``hash_to_field`` refuses to return the sentinel.

Version: 1.0.0
"""

import hashlib
import re

from shared.logging import get_logger


logger = get_logger(__name__)

# BN254 scalar field order
FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617

PADDING_SENTINEL = 0

_DECIMAL_RE = re.compile(r"^(0|[1-9][0-9]*)$")


class PaddingSentinelCollisionError(ValueError):
    """A value hashed to the reserved padding element."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Value {value!r} hashes to the padding sentinel {PADDING_SENTINEL}")
        self.value = value


def hash_to_field(value: str) -> int:
    """
    Hash a string to a field element.

    Args:
        value: Non-empty string (compared byte-for-byte, no normalisation)

    Returns:
        Integer in [1, FIELD_PRIME)

    Raises:
        ValueError: If the string is empty
        PaddingSentinelCollisionError: If the digest reduces to the sentinel
    """
    if not value:
        raise ValueError("Cannot hash an empty string to a field element")

    digest = hashlib.sha256(value.encode("utf-8")).digest()
    element = int.from_bytes(digest, "big") % FIELD_PRIME

    if element == PADDING_SENTINEL:
        logger.error("field_hash_sentinel_collision", value_length=len(value))
        raise PaddingSentinelCollisionError(value)

    return element


def hash_and_pad(values: list[str], size: int) -> list[int]:
    """
    Hash each value and right-pad with the sentinel up to ``size``.

    Order is preserved; the caller's list order is the public-signal order.
    """
    if len(values) > size:
        raise ValueError(f"Set size {len(values)} exceeds maximum of {size} elements")

    hashed = [hash_to_field(v) for v in values]
    hashed.extend([PADDING_SENTINEL] * (size - len(hashed)))
    return hashed


def to_field_element(signal: str) -> int:
    """
    Parse a public signal in canonical decimal form.

    Rejects signs, whitespace, leading zeros and values outside the field so
    that two different strings can never denote the same element.
    """
    if not isinstance(signal, str) or not _DECIMAL_RE.match(signal):
        raise ValueError(f"Not a canonical decimal field element: {signal!r}")
    element = int(signal)
    if element >= FIELD_PRIME:
        raise ValueError("Field element is not reduced modulo the field prime")
    return element


class FieldHasher:
    """
    Stateless hasher bound to a field order.

    Kept as a class so verifiers can be handed an instance; every instance
    with the same prime produces identical output.
    """

    prime = FIELD_PRIME

    def hash(self, value: str) -> int:
        return hash_to_field(value)

    def hash_and_pad(self, values: list[str], size: int) -> list[int]:
        return hash_and_pad(values, size)

    def hash_hex(self, value: str) -> str:
        """Short hex form for log lines."""
        return f"{self.hash(value):064x}"[:16]
