"""
Proof Verifier Tests
====================

Gate order, signal binding and failure handling of ProofVerifier.

Version: 0.1.0
"""

import asyncio
import json
import subprocess
from pathlib import Path
from typing import Any

import pytest

from shared.models.rejections import RejectionReason
from shared.zk import (
    FIELD_PRIME,
    ProofPackage,
    ProofVerifier,
    RangeRequirement,
    SetRequirement,
    SnarkjsVerificationPrimitive,
    VerificationKeyNotFoundError,
    VerificationKeyStore,
    hash_to_field,
)
from tests.conftest import FakePrimitive, range_package, set_package


AGE_25_40 = RangeRequirement(min=25, max=40)
COUNTRIES = SetRequirement(allowed_values=("US", "CA", "GB"))


# =============================================================================
# Gates
# =============================================================================


class TestVerifierGates:
    """Each gate rejects with its own reason, in order."""

    def test_valid_range_proof(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        result = verifier.verify(range_package(25, 40), AGE_25_40)

        assert result.valid
        assert result.reason is None
        assert result.circuit_name == "range_check"
        assert result.public_signals == ["1", "25", "40"]
        assert len(primitive.calls) == 1

    def test_age_range_circuit_accepted_for_range(self, verifier: ProofVerifier) -> None:
        result = verifier.verify(range_package(25, 40, circuit="age_range"), AGE_25_40)
        assert result.valid

    def test_valid_set_proof(self, verifier: ProofVerifier) -> None:
        result = verifier.verify(set_package(["US", "CA", "GB"]), COUNTRIES)
        assert result.valid

    def test_unknown_circuit(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        package = range_package(25, 40, circuit="age_over_18")

        result = verifier.verify(package, AGE_25_40)

        assert not result.valid
        assert result.reason == RejectionReason.UNKNOWN_CIRCUIT
        assert primitive.calls == []

    def test_wrong_signal_count(self, verifier: ProofVerifier) -> None:
        package = ProofPackage(
            circuit_name="range_check",
            proof=range_package(25, 40).proof,
            public_signals=("1", "25"),
        )

        result = verifier.verify(package, AGE_25_40)

        assert result.reason == RejectionReason.SIGNAL_SHAPE_MISMATCH

    @pytest.mark.parametrize("bad", ["025", "-25", "2.5", "", " 25"])
    def test_non_canonical_signal(self, verifier: ProofVerifier, bad: str) -> None:
        package = ProofPackage(
            circuit_name="range_check",
            proof=range_package(25, 40).proof,
            public_signals=("1", bad, "40"),
        )

        assert verifier.verify(package, AGE_25_40).reason == RejectionReason.SIGNAL_SHAPE_MISMATCH

    def test_unreduced_signal(self, verifier: ProofVerifier) -> None:
        """A signal of p + 25 would alias 25 under the field."""
        package = ProofPackage(
            circuit_name="range_check",
            proof=range_package(25, 40).proof,
            public_signals=("1", str(FIELD_PRIME + 25), "40"),
        )

        assert verifier.verify(package, AGE_25_40).reason == RejectionReason.SIGNAL_SHAPE_MISMATCH

    def test_range_bounds_mismatch(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        """A valid proof for a wider range does not satisfy the campaign."""
        result = verifier.verify(range_package(18, 99), AGE_25_40)

        assert result.reason == RejectionReason.SIGNAL_MISMATCH
        assert "min" in (result.detail or "")
        assert primitive.calls == []

    def test_set_order_matters(self, verifier: ProofVerifier) -> None:
        result = verifier.verify(set_package(["CA", "US", "GB"]), COUNTRIES)
        assert result.reason == RejectionReason.SIGNAL_MISMATCH

    def test_set_superset_rejected(self, verifier: ProofVerifier) -> None:
        result = verifier.verify(set_package(["US", "CA", "GB", "FR"]), COUNTRIES)
        assert result.reason == RejectionReason.SIGNAL_MISMATCH

    def test_kind_mismatch(self, verifier: ProofVerifier) -> None:
        """A range circuit cannot answer a set requirement."""
        result = verifier.verify(range_package(25, 40), COUNTRIES)
        assert result.reason == RejectionReason.SIGNAL_MISMATCH

    def test_pinned_circuit_mismatch(self, verifier: ProofVerifier) -> None:
        requirement = RangeRequirement(min=25, max=40, circuit="age_range")

        result = verifier.verify(range_package(25, 40, circuit="range_check"), requirement)

        assert result.reason == RejectionReason.SIGNAL_MISMATCH

    def test_pairing_failure(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        primitive.result = False

        result = verifier.verify(range_package(25, 40), AGE_25_40)

        assert result.reason == RejectionReason.CRYPTOGRAPHICALLY_INVALID

    def test_primitive_exception_is_invalid(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        primitive.error = RuntimeError("malformed proof point")

        result = verifier.verify(range_package(25, 40), AGE_25_40)

        assert result.reason == RejectionReason.CRYPTOGRAPHICALLY_INVALID

    def test_predicate_false(self, verifier: ProofVerifier) -> None:
        """Cryptographically sound proof that the value is out of range."""
        result = verifier.verify(range_package(25, 40, valid="0"), AGE_25_40)

        assert result.reason == RejectionReason.PREDICATE_FALSE

    def test_shape_checked_before_pairing(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        primitive.result = False
        package = ProofPackage(
            circuit_name="range_check",
            proof=range_package(25, 40).proof,
            public_signals=("1", "25", "40", "0"),
        )

        assert verifier.verify(package, AGE_25_40).reason == RejectionReason.SIGNAL_SHAPE_MISMATCH

    def test_signals_passed_to_primitive_unchanged(
        self,
        verifier: ProofVerifier,
        primitive: FakePrimitive,
    ) -> None:
        verifier.verify(set_package(["US", "CA", "GB"]), COUNTRIES)

        key, signals, proof = primitive.calls[0]
        assert key["nPublic"] == 11
        assert signals[1] == str(hash_to_field("US"))
        assert signals[4:] == ["0"] * 7
        assert proof["protocol"] == "groth16"


# =============================================================================
# Verification keys
# =============================================================================


class TestVerificationKeys:
    """A missing key is a configuration fault, not a rejection."""

    def test_missing_key_raises(self, primitive: FakePrimitive, tmp_path: Path) -> None:
        verifier = ProofVerifier(primitive=primitive, key_store=VerificationKeyStore(keys_dir=tmp_path))

        with pytest.raises(VerificationKeyNotFoundError):
            verifier.verify(range_package(25, 40), AGE_25_40)

    def test_key_loaded_from_disk_and_cached(self, tmp_path: Path) -> None:
        key = {"protocol": "groth16", "nPublic": 3}
        (tmp_path / "range_check_verification_key.json").write_text(json.dumps(key))
        store = VerificationKeyStore(keys_dir=tmp_path)

        assert store.load("range_check") == key

        (tmp_path / "range_check_verification_key.json").unlink()
        assert store.load("range_check") == key

    def test_signal_failures_do_not_need_key(self, primitive: FakePrimitive, tmp_path: Path) -> None:
        verifier = ProofVerifier(primitive=primitive, key_store=VerificationKeyStore(keys_dir=tmp_path))

        result = verifier.verify(range_package(18, 99), AGE_25_40)

        assert result.reason == RejectionReason.SIGNAL_MISMATCH


# =============================================================================
# Batch, async and helpers
# =============================================================================


class TestVerifierHelpers:
    """Tests for batch and async verification and wire parsing."""

    def test_batch_is_independent(self, verifier: ProofVerifier) -> None:
        results = verifier.verify_batch(
            [
                (range_package(25, 40), AGE_25_40),
                (range_package(18, 99), AGE_25_40),
                (set_package(["US", "CA", "GB"]), COUNTRIES),
            ]
        )

        assert [r.valid for r in results] == [True, False, True]
        assert results[1].reason == RejectionReason.SIGNAL_MISMATCH

    @pytest.mark.asyncio
    async def test_verify_async(self, verifier: ProofVerifier) -> None:
        results = await asyncio.gather(
            verifier.verify_async(range_package(25, 40), AGE_25_40),
            verifier.verify_async(range_package(25, 40, valid="0"), AGE_25_40),
        )

        assert results[0].valid
        assert results[1].reason == RejectionReason.PREDICATE_FALSE

    def test_wire_names_accepted(self) -> None:
        package = ProofPackage.model_validate(
            {
                "circuitName": "range_check",
                "proof": range_package(25, 40).proof.model_dump(),
                "publicSignals": ["1", "25", "40"],
            }
        )

        assert package.to_wire()["publicSignals"] == ["1", "25", "40"]

    def test_proof_is_plain_snarkjs_json(self, verifier: ProofVerifier, primitive: FakePrimitive) -> None:
        proof = {**range_package(25, 40).proof.model_dump(), "origin": "extension"}
        package = ProofPackage.model_validate(
            {"circuitName": "range_check", "proof": proof, "publicSignals": ["1", "25", "40"]}
        )

        assert verifier.verify(package, AGE_25_40).valid
        assert primitive.calls[0][2] == proof


class TestSnarkjsPrimitive:
    """The CLI primitive, with subprocess stubbed out."""

    def _run(self, monkeypatch: pytest.MonkeyPatch, outcome: Any) -> list[list[str]]:
        commands: list[list[str]] = []

        def fake_run(cmd: list[str], **kwargs: Any) -> Any:
            commands.append(cmd)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        monkeypatch.setattr(subprocess, "run", fake_run)
        return commands

    def test_ok_output(self, monkeypatch: pytest.MonkeyPatch) -> None:
        commands = self._run(
            monkeypatch,
            subprocess.CompletedProcess(args=[], returncode=0, stdout="[INFO]  snarkJS: OK!\n", stderr=""),
        )
        primitive = SnarkjsVerificationPrimitive(command="npx snarkjs", timeout_seconds=1)

        assert primitive.verify({"nPublic": 3}, ["1", "25", "40"], {"pi_a": []})
        assert commands[0][:4] == ["npx", "snarkjs", "groth16", "verify"]

    def test_invalid_output(self, monkeypatch: pytest.MonkeyPatch) -> None:
        self._run(
            monkeypatch,
            subprocess.CompletedProcess(args=[], returncode=1, stdout="[ERROR] snarkJS: Invalid proof", stderr=""),
        )

        assert not SnarkjsVerificationPrimitive(timeout_seconds=1).verify({}, ["1"], {})

    def test_timeout_is_invalid(self, monkeypatch: pytest.MonkeyPatch) -> None:
        self._run(monkeypatch, subprocess.TimeoutExpired(cmd="snarkjs", timeout=1))

        assert not SnarkjsVerificationPrimitive(timeout_seconds=1).verify({}, ["1"], {})
