"""
Proof workflow orchestrator.

    orchestrator = RandomCircuitOrchestrator(CircuitConfig(num_outputs=5, pool_size=35))
    orchestrator.initialize()
    bundle = orchestrator.generate_proof({"blockHash": "0x1234", "userNonce": 7})
    bundle.derived_outputs  # five distinct values in [1, 35]

initialize() builds any missing artifacts and loads the verification key.
generate_proof() verifies every proof it produces before handing it back, so
a returned bundle is always one the loaded key accepts.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List

from .artifacts import ArtifactRegistry
from .config_manager import CircuitConfig
from .errors import (
    FileIOError,
    NotReadyError,
    RandomGenError,
    ValidationError,
    VerificationMismatchError,
)
from .exec_manager import SnarkjsBackend
from .gen_input import MODULUS_FAMILY, create_circuit_inputs
from .permutation import permute
from .seed import derive_seed, reduce_seeds
from .setup_driver import SetupDriver
from .timings import TimingLog

logger = logging.getLogger(__name__)

PROOF_FILE = "proof.json"
PUBLIC_SIGNALS_FILE = "public.json"
OUTPUTS_FILE = "outputs.json"

PROOF_KEYS = ("pi_a", "pi_b", "pi_c")
PROOF_PROTOCOL = "groth16"

# Per-stage cap on the timing samples an orchestrator keeps in memory
MAX_TIMING_SAMPLES = 10000


class OrchestratorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ProofBundle:
    proof: dict
    public_signals: List[str]
    derived_outputs: List[int] = field(default_factory=list)
    inputs: Dict[str, str] = field(default_factory=dict)


class RandomCircuitOrchestrator:

    def __init__(self, config=None, backend=None, hasher=None, timings=None):
        self.config = config if config is not None else CircuitConfig()
        if self.config.cross_check_outputs and hasher is None:
            raise ValidationError("cross_check_outputs needs a hash primitive for the host computation")
        self.backend = backend if backend is not None else SnarkjsBackend()
        self.hasher = hasher
        self.timings = timings if timings is not None else TimingLog(MAX_TIMING_SAMPLES)
        self.registry = ArtifactRegistry(self.config)
        self.setup_driver = SetupDriver(self.config, self.backend, self.registry, self.timings)
        self.vkey = None
        self.state = OrchestratorState.UNINITIALIZED
        self.failure = None

    @property
    def initialized(self):
        return self.state == OrchestratorState.READY

    ##################
    # INITIALIZATION #
    ##################

    def validate_build_artifacts(self):
        return self.registry.validate()

    def initialize(self, force=()):
        """
        Build missing or stale artifacts, then load the verification key.

        Calling it again once ready only re-plans the build, which costs a few
        stat calls when nothing changed.
        """
        if self.state == OrchestratorState.FAILED:
            raise NotReadyError(f"Orchestrator failed to initialize: {self.failure}")
        if self.state == OrchestratorState.READY and not force:
            if not self.registry.plan_build():
                return self

        self.state = OrchestratorState.INITIALIZING
        try:
            validation = self.registry.validate()
            if not validation.complete:
                logger.info("Generating artifacts...")
            # Also rebuilds complete but stale artifacts, e.g. after a source edit
            self.setup_driver.ensure_artifacts(force)
            self.vkey = self._load_verification_key()
            if self.hasher is not None:
                self.hasher.initialize()
        except RandomGenError as e:
            self.state = OrchestratorState.FAILED
            self.failure = e
            logger.error("Failed to initialize orchestrator: %s", e)
            raise
        self.state = OrchestratorState.READY
        return self

    def _ensure_ready(self):
        if self.state != OrchestratorState.READY or self.vkey is None:
            self.initialize()

    def _load_verification_key(self):
        path = self.config.vkey_path
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise FileIOError(f"Verification key not found: {path}") from e
        except ValueError as e:
            raise FileIOError(f"Verification key {path} is not valid JSON: {e}") from e

    ##########
    # PROVER #
    ##########

    def create_circuit_inputs(self, raw_inputs):
        return create_circuit_inputs(raw_inputs, self.config.family, self.config.extra_entropy)

    def generate_proof(self, raw_inputs) -> ProofBundle:
        # Validate before touching the toolchain
        circuit_inputs = self.create_circuit_inputs(raw_inputs)
        self._ensure_ready()

        with self.timings.measure("prover"):
            proof, public_signals = self.backend.prove(
                circuit_inputs, self.config.wasm_path, self.config.zkey_path
            )

        with self.timings.measure("verifier"):
            valid = self.backend.verify(self.vkey, public_signals, proof)
        if not valid:
            raise VerificationMismatchError(
                f"Proof generated for {self.config.circuit_name} failed verification against its own key"
            )

        if len(public_signals) < self.config.num_outputs:
            raise VerificationMismatchError(
                f"Expected at least {self.config.num_outputs} public signals, got {len(public_signals)}"
            )
        outputs = [int(signal) for signal in public_signals[: self.config.num_outputs]]

        if self.config.cross_check_outputs:
            expected = self.compute_local_outputs(circuit_inputs)
            if outputs != expected:
                raise VerificationMismatchError(
                    f"Circuit outputs {outputs} differ from host computation {expected}"
                )

        logger.info("Generated proof for %s: %s", self.config.circuit_name, outputs)
        return ProofBundle(
            proof=proof,
            public_signals=list(public_signals),
            derived_outputs=outputs,
            inputs=circuit_inputs,
        )

    def compute_local_outputs(self, raw_inputs):
        """The outputs the circuit should produce for ``raw_inputs``, without proving."""
        if self.hasher is None:
            raise NotReadyError("No hash primitive configured for local computation")
        circuit_inputs = self.create_circuit_inputs(raw_inputs)
        seed_inputs = [circuit_inputs["blockHash"], circuit_inputs["userNonce"]]
        if self.config.extra_entropy:
            seed_inputs.append(circuit_inputs["extraEntropy"])

        if self.config.family == MODULUS_FAMILY:
            seed = derive_seed(self.hasher, seed_inputs, self.config.num_outputs)
            return reduce_seeds(seed, circuit_inputs["N"])
        seed = derive_seed(self.hasher, seed_inputs, 1)
        return permute(seed, self.config.range_spec)

    ############
    # VERIFIER #
    ############

    def verify_proof(self, proof, public_signals) -> bool:
        """True when the loaded key accepts the proof; an invalid proof is False, not an error."""
        if proof is None:
            raise ValidationError("proof is required")
        if public_signals is None:
            raise ValidationError("publicSignals is required")
        if not isinstance(proof, dict) or not isinstance(public_signals, (list, tuple)):
            raise ValidationError("proof must be an object and publicSignals a list")
        self._ensure_ready()

        if not all(key in proof for key in PROOF_KEYS) or not _all_decimal(public_signals):
            logger.info("Rejecting malformed proof without calling the verifier")
            return False
        if not self._matches_key(proof):
            logger.info("Rejecting proof for another protocol or curve")
            return False

        with self.timings.measure("verifier"):
            return bool(self.backend.verify(self.vkey, list(public_signals), proof))

    def _matches_key(self, proof):
        if proof.get("protocol", PROOF_PROTOCOL) != PROOF_PROTOCOL:
            return False
        curve = proof.get("curve")
        key_curve = self.vkey.get("curve") if isinstance(self.vkey, dict) else None
        return curve is None or key_curve is None or curve == key_curve

    ###############
    # PERSISTENCE #
    ###############

    def save_proof_data(self, bundle, output_dir=None):
        """Write proof.json, public.json and outputs.json; return their paths."""
        if bundle is None:
            raise ValidationError("bundle is required")
        output_dir = Path(output_dir) if output_dir is not None else self.config.build_dir

        files = {
            "proof": output_dir / PROOF_FILE,
            "public_signals": output_dir / PUBLIC_SIGNALS_FILE,
            "outputs": output_dir / OUTPUTS_FILE,
        }
        records = {
            "proof": bundle.proof,
            "public_signals": [str(s) for s in bundle.public_signals],
            "outputs": {
                "outputs": [str(v) for v in bundle.derived_outputs],
                "inputs": dict(bundle.inputs),
            },
        }
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            for key, path in files.items():
                with path.open("w", encoding="utf-8") as f:
                    json.dump(records[key], f, indent=2)
        except OSError as e:
            raise FileIOError(f"Cannot save proof data to {output_dir}: {e}") from e
        return files

    def load_proof_data(self, proof_file=None, public_signals_file=None, outputs_file=None) -> ProofBundle:
        build_dir = self.config.build_dir
        proof_file = Path(proof_file) if proof_file is not None else build_dir / PROOF_FILE
        public_signals_file = (
            Path(public_signals_file) if public_signals_file is not None else build_dir / PUBLIC_SIGNALS_FILE
        )

        if not proof_file.is_file():
            raise FileIOError(f"Proof file not found: {proof_file}")
        if not public_signals_file.is_file():
            raise FileIOError(f"Public signals file not found: {public_signals_file}")

        proof = _read_json(proof_file)
        public_signals = _read_json(public_signals_file)
        if not isinstance(proof, dict):
            raise FileIOError(f"{proof_file} does not hold a proof object")
        if not isinstance(public_signals, list):
            raise FileIOError(f"{public_signals_file} does not hold a list of public signals")

        bundle = ProofBundle(proof=proof, public_signals=public_signals)
        if outputs_file is not None:
            outputs_file = Path(outputs_file)
            if not outputs_file.is_file():
                raise FileIOError(f"Outputs file not found: {outputs_file}")
            record = _read_json(outputs_file)
            try:
                bundle.derived_outputs = [int(v) for v in record["outputs"]]
                bundle.inputs = dict(record.get("inputs", {}))
            except (KeyError, TypeError, ValueError) as e:
                raise FileIOError(f"{outputs_file} is not a valid outputs record: {e}") from e
        return bundle


def _read_json(path):
    try:
        with Path(path).open("r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise FileIOError(f"Cannot read {path}: {e}") from e
    except ValueError as e:
        raise FileIOError(f"{path} is not valid JSON: {e}") from e


def _all_decimal(values):
    return all(isinstance(v, (str, int)) and not isinstance(v, bool) and str(v).isdigit() for v in values)
