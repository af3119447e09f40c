"""
Circuit Registry
================

Static metadata for the supported predicate circuits.

Every circuit publishes its validity output first, followed by its public
inputs:

    range_check / age_range   [valid, min, max]
    set_membership            [valid, set[0], ..., set[9]]

Proof generation happens in the attribute holder's toolchain; this module
only describes the public-signal layout the verifier must expect.

Version: 1.0.0
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum


class CircuitKind(str, Enum):
    """Closed set of circuit families."""

    RANGE = "range"
    SET_MEMBERSHIP = "set_membership"


class UnknownCircuitError(KeyError):
    """Raised when a circuit name is not registered."""

    def __init__(self, name: str, available: Iterable[str]) -> None:
        super().__init__(name)
        self.name = name
        self.available = sorted(available)

    def __str__(self) -> str:
        return f"Circuit not found: {self.name}. Available: {', '.join(self.available)}"


@dataclass(frozen=True)
class CircuitSpec:
    """Public-signal layout of one circuit."""

    name: str
    kind: CircuitKind
    public_slots: tuple[str, ...]
    description: str = ""
    validity_slot: str = "valid"
    true_sentinel: str = "1"
    max_set_size: int = 0
    verification_key_name: str = field(default="")

    def __post_init__(self) -> None:
        if self.validity_slot not in self.public_slots:
            raise ValueError(f"{self.name}: validity slot {self.validity_slot!r} not in public slots")
        if not self.verification_key_name:
            object.__setattr__(self, "verification_key_name", self.name)

    @property
    def signal_count(self) -> int:
        return len(self.public_slots)

    @property
    def validity_index(self) -> int:
        return self.public_slots.index(self.validity_slot)

    @property
    def input_indices(self) -> list[int]:
        """Indices of every slot except the validity output."""
        return [i for i in range(self.signal_count) if i != self.validity_index]


def _range_circuit(name: str, description: str) -> CircuitSpec:
    return CircuitSpec(
        name=name,
        kind=CircuitKind.RANGE,
        public_slots=("valid", "min", "max"),
        description=description,
    )


def _set_circuit(name: str, size: int, description: str) -> CircuitSpec:
    return CircuitSpec(
        name=name,
        kind=CircuitKind.SET_MEMBERSHIP,
        public_slots=("valid", *(f"set[{i}]" for i in range(size))),
        description=description,
        max_set_size=size,
    )


DEFAULT_CIRCUITS: tuple[CircuitSpec, ...] = (
    _range_circuit(
        "range_check",
        "Proves a numeric value lies within [min, max] without revealing it",
    ),
    _range_circuit(
        "age_range",
        "Proves age lies within [min, max] without revealing the exact age",
    ),
    _set_circuit(
        "set_membership",
        10,
        "Proves a hashed value is a member of an allow-list of at most 10 entries",
    ),
)


class CircuitRegistry:
    """
    Name -> CircuitSpec lookup.

    Usage:
        registry = CircuitRegistry()
        spec = registry.lookup("range_check")
    """

    def __init__(self, circuits: Iterable[CircuitSpec] = DEFAULT_CIRCUITS) -> None:
        self._circuits: dict[str, CircuitSpec] = {}
        for spec in circuits:
            self.register(spec)

    def register(self, spec: CircuitSpec) -> None:
        if spec.name in self._circuits:
            raise ValueError(f"Circuit already registered: {spec.name}")
        self._circuits[spec.name] = spec

    def lookup(self, name: str) -> CircuitSpec:
        """
        Resolve a circuit by name.

        Raises:
            UnknownCircuitError: If no such circuit is registered
        """
        try:
            return self._circuits[name]
        except KeyError:
            raise UnknownCircuitError(name, self._circuits) from None

    def __contains__(self, name: object) -> bool:
        return name in self._circuits

    def list_circuits(self) -> list[str]:
        return list(self._circuits)

    def circuits_by_kind(self, kind: CircuitKind) -> list[CircuitSpec]:
        return [c for c in self._circuits.values() if c.kind == kind]


default_registry = CircuitRegistry()
