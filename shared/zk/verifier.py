"""
ZK-SNARK Proof Verification
===========================

Verify a submitted proof package against a campaign requirement.

Gates, in order (first failure wins, nothing is retried):

1. circuit is registered                        -> UnknownCircuit
2. signal count and encoding match the circuit  -> SignalShapeMismatch
3. public inputs equal the campaign requirement -> SignalMismatch
4. pairing check by the external primitive      -> CryptographicallyInvalid
5. validity output equals the true sentinel     -> PredicateFalse

Gate 3 runs before the expensive pairing check and is what stops a true
statement about some other set or range from being passed off as meeting
this campaign's requirement.

Version: 1.0.0
"""

import asyncio
import json
import shlex
import subprocess
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from shared.config import settings
from shared.logging import get_logger
from shared.models.rejections import RejectionReason
from shared.zk.circuits import (
    CircuitKind,
    CircuitRegistry,
    CircuitSpec,
    UnknownCircuitError,
    default_registry,
)
from shared.zk.hashing import FieldHasher, to_field_element
from shared.zk.models import (
    CampaignRequirement,
    ProofPackage,
    RangeRequirement,
    SetRequirement,
    VerificationResult,
)


logger = get_logger(__name__)


class VerificationPrimitive(Protocol):
    """External pairing check. CPU-bound, no I/O beyond local files."""

    def verify(
        self,
        verification_key: dict[str, Any],
        public_signals: list[str],
        proof: dict[str, Any],
    ) -> bool:
        ...


class VerificationKeyNotFoundError(FileNotFoundError):
    """Verification key for a registered circuit is missing."""


class VerificationKeyStore:
    """
    Loads ``<name>_verification_key.json`` files and caches them.

    Args:
        keys_dir: Directory holding the key files
        preloaded: Keys supplied directly, keyed by verification key name
    """

    def __init__(
        self,
        keys_dir: str | Path | None = None,
        preloaded: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self.keys_dir = Path(keys_dir) if keys_dir else settings.zk.verification_keys_dir
        self._cache: dict[str, dict[str, Any]] = dict(preloaded or {})

    def path_for(self, name: str) -> Path:
        return self.keys_dir / f"{name}_verification_key.json"

    def load(self, name: str) -> dict[str, Any]:
        if name in self._cache:
            return self._cache[name]

        path = self.path_for(name)
        if not path.exists():
            raise VerificationKeyNotFoundError(f"Verification key not found: {path.name}")

        with open(path) as f:
            key = json.load(f)
        self._cache[name] = key
        logger.debug("verification_key_loaded", circuit=name)
        return key


class SnarkjsVerificationPrimitive:
    """
    Groth16 verification through the snarkjs CLI.

    Writes key, signals and proof to a private temp directory and runs
    ``snarkjs groth16 verify``.
    """

    def __init__(self, command: str | None = None, timeout_seconds: float | None = None) -> None:
        self.command = shlex.split(command or settings.zk.snarkjs_command)
        self.timeout_seconds = timeout_seconds or settings.zk.verify_timeout_seconds

    def verify(
        self,
        verification_key: dict[str, Any],
        public_signals: list[str],
        proof: dict[str, Any],
    ) -> bool:
        with tempfile.TemporaryDirectory(prefix="zk-verify-") as tmp:
            tmp_dir = Path(tmp)
            vkey_file = tmp_dir / "verification_key.json"
            public_file = tmp_dir / "public.json"
            proof_file = tmp_dir / "proof.json"

            vkey_file.write_text(json.dumps(verification_key))
            public_file.write_text(json.dumps(public_signals))
            proof_file.write_text(json.dumps(proof))

            try:
                result = subprocess.run(
                    [
                        *self.command,
                        "groth16",
                        "verify",
                        str(vkey_file),
                        str(public_file),
                        str(proof_file),
                    ],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                )
            except subprocess.TimeoutExpired:
                logger.warning("snarkjs_verify_timeout", timeout_seconds=self.timeout_seconds)
                return False

        return result.returncode == 0 and "OK" in result.stdout


class SignalCheckFailed(Exception):
    """Internal control flow for gates 2 and 3."""

    def __init__(self, reason: RejectionReason, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


def _expected_range(spec: CircuitSpec, requirement: CampaignRequirement, hasher: FieldHasher) -> list[int]:
    if not isinstance(requirement, RangeRequirement):
        raise SignalCheckFailed(
            RejectionReason.SIGNAL_MISMATCH,
            f"Circuit {spec.name} proves a range but the requirement is {requirement.kind!r}",
        )
    return [requirement.min, requirement.max]


def _expected_set(spec: CircuitSpec, requirement: CampaignRequirement, hasher: FieldHasher) -> list[int]:
    if not isinstance(requirement, SetRequirement):
        raise SignalCheckFailed(
            RejectionReason.SIGNAL_MISMATCH,
            f"Circuit {spec.name} proves set membership but the requirement is {requirement.kind!r}",
        )
    try:
        return hasher.hash_and_pad(list(requirement.allowed_values), spec.max_set_size)
    except ValueError as e:
        raise SignalCheckFailed(RejectionReason.SIGNAL_MISMATCH, str(e)) from e


# Adding a circuit family means adding an entry here.
EXPECTED_SIGNALS: dict[
    CircuitKind,
    Callable[[CircuitSpec, CampaignRequirement, FieldHasher], list[int]],
] = {
    CircuitKind.RANGE: _expected_range,
    CircuitKind.SET_MEMBERSHIP: _expected_set,
}


class ProofVerifier:
    """
    Campaign-aware proof verifier.

    Usage:
        verifier = ProofVerifier(primitive=SnarkjsVerificationPrimitive())
        result = verifier.verify(package, RangeRequirement(min=40, max=60))
        if not result.valid:
            print(result.reason, result.detail)
    """

    def __init__(
        self,
        primitive: VerificationPrimitive | None = None,
        registry: CircuitRegistry | None = None,
        hasher: FieldHasher | None = None,
        key_store: VerificationKeyStore | None = None,
    ) -> None:
        self.primitive = primitive or SnarkjsVerificationPrimitive()
        self.registry = registry or default_registry
        self.hasher = hasher or FieldHasher()
        self.key_store = key_store or VerificationKeyStore()

    def expected_signals(self, spec: CircuitSpec, requirement: CampaignRequirement) -> list[int]:
        """Public inputs (validity slot excluded) the requirement demands."""
        if requirement.circuit and requirement.circuit != spec.name:
            raise SignalCheckFailed(
                RejectionReason.SIGNAL_MISMATCH,
                f"Requirement pins circuit {requirement.circuit!r}, proof used {spec.name!r}",
            )
        return EXPECTED_SIGNALS[spec.kind](spec, requirement, self.hasher)

    def _check_shape(self, spec: CircuitSpec, package: ProofPackage) -> list[int]:
        signals = package.public_signals
        if len(signals) != spec.signal_count:
            raise SignalCheckFailed(
                RejectionReason.SIGNAL_SHAPE_MISMATCH,
                f"Circuit {spec.name} expects {spec.signal_count} public signals, got {len(signals)}",
            )
        try:
            return [to_field_element(s) for s in signals]
        except ValueError as e:
            raise SignalCheckFailed(RejectionReason.SIGNAL_SHAPE_MISMATCH, str(e)) from e

    def _check_binding(
        self,
        spec: CircuitSpec,
        elements: list[int],
        requirement: CampaignRequirement,
    ) -> None:
        expected = self.expected_signals(spec, requirement)
        presented = [elements[i] for i in spec.input_indices]
        for position, (want, got) in enumerate(zip(expected, presented, strict=True)):
            if want != got:
                slot = spec.public_slots[spec.input_indices[position]]
                raise SignalCheckFailed(
                    RejectionReason.SIGNAL_MISMATCH,
                    f"Public signal {slot} does not match the campaign requirement",
                )

    def _pairing_check(self, spec: CircuitSpec, package: ProofPackage) -> bool:
        # Raises VerificationKeyNotFoundError: configuration faults are not
        # the submitter's fault and must not become a rejection.
        verification_key = self.key_store.load(spec.verification_key_name)
        try:
            return bool(
                self.primitive.verify(
                    verification_key,
                    list(package.public_signals),
                    package.proof.model_dump(),
                )
            )
        except Exception as e:
            logger.warning(
                "zk_primitive_error",
                circuit=spec.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def verify(self, package: ProofPackage, requirement: CampaignRequirement) -> VerificationResult:
        """
        Run all gates against one package.

        Returns:
            VerificationResult, ``valid`` only if every gate passed
        """
        start_time = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - start_time) * 1000)

        def rejected(reason: RejectionReason, detail: str) -> VerificationResult:
            logger.info(
                "zk_proof_rejected",
                circuit=package.circuit_name,
                reason=reason.value,
                detail=detail,
            )
            return VerificationResult.reject(package, reason, detail, elapsed())

        try:
            spec = self.registry.lookup(package.circuit_name)
        except UnknownCircuitError as e:
            return rejected(RejectionReason.UNKNOWN_CIRCUIT, str(e))

        try:
            elements = self._check_shape(spec, package)
            self._check_binding(spec, elements, requirement)
        except SignalCheckFailed as e:
            return rejected(e.reason, e.detail)

        if not self._pairing_check(spec, package):
            return rejected(
                RejectionReason.CRYPTOGRAPHICALLY_INVALID,
                "Proof failed cryptographic verification",
            )

        if package.public_signals[spec.validity_index] != spec.true_sentinel:
            return rejected(
                RejectionReason.PREDICATE_FALSE,
                "Proof is valid but shows the predicate does not hold",
            )

        result = VerificationResult.accept(package, elapsed())
        logger.info(
            "zk_proof_verified",
            circuit=spec.name,
            verification_time_ms=result.verification_time_ms,
        )
        return result

    async def verify_async(
        self,
        package: ProofPackage,
        requirement: CampaignRequirement,
    ) -> VerificationResult:
        """Run ``verify`` off the event loop."""
        return await asyncio.to_thread(self.verify, package, requirement)

    def verify_batch(
        self,
        items: list[tuple[ProofPackage, CampaignRequirement]],
    ) -> list[VerificationResult]:
        """Verify several packages; every package is checked independently."""
        return [self.verify(package, requirement) for package, requirement in items]

