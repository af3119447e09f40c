"""
Unit tests for the circuit registry.
"""

import pytest

from shared.zk import CircuitKind, CircuitRegistry, CircuitSpec, UnknownCircuitError, default_registry


class TestCircuitRegistry:
    """Tests for CircuitRegistry."""

    def test_default_circuits(self) -> None:
        assert set(default_registry.list_circuits()) == {"range_check", "age_range", "set_membership"}

    @pytest.mark.parametrize("name", ["range_check", "age_range"])
    def test_range_layout(self, name: str) -> None:
        spec = default_registry.lookup(name)

        assert spec.kind == CircuitKind.RANGE
        assert spec.public_slots == ("valid", "min", "max")
        assert spec.validity_index == 0
        assert spec.input_indices == [1, 2]
        assert spec.true_sentinel == "1"

    def test_set_membership_layout(self) -> None:
        spec = default_registry.lookup("set_membership")

        assert spec.kind == CircuitKind.SET_MEMBERSHIP
        assert spec.signal_count == 11
        assert spec.max_set_size == 10
        assert spec.public_slots[1] == "set[0]"
        assert spec.public_slots[-1] == "set[9]"

    def test_unknown_circuit(self) -> None:
        with pytest.raises(UnknownCircuitError) as exc_info:
            default_registry.lookup("age_over_18")

        assert exc_info.value.name == "age_over_18"
        assert "range_check" in str(exc_info.value)

    def test_contains(self) -> None:
        assert "range_check" in default_registry
        assert "nope" not in default_registry

    def test_circuits_by_kind(self) -> None:
        names = {c.name for c in default_registry.circuits_by_kind(CircuitKind.RANGE)}
        assert names == {"range_check", "age_range"}

    def test_duplicate_registration(self) -> None:
        registry = CircuitRegistry()
        with pytest.raises(ValueError, match="already registered"):
            registry.register(default_registry.lookup("range_check"))

    def test_custom_circuit(self) -> None:
        registry = CircuitRegistry([])
        registry.register(
            CircuitSpec(
                name="income_range",
                kind=CircuitKind.RANGE,
                public_slots=("valid", "min", "max"),
            )
        )

        spec = registry.lookup("income_range")
        assert spec.verification_key_name == "income_range"

    def test_validity_slot_must_exist(self) -> None:
        with pytest.raises(ValueError):
            CircuitSpec(name="broken", kind=CircuitKind.RANGE, public_slots=("min", "max"))
