from .artifacts import ArtifactKind, ArtifactRegistry, BuildAction, BuildStep, ValidationReport
from .config_manager import CircuitConfig, load_config, save_config
from .errors import (
    ArtifactMissingError,
    ExternalToolError,
    FileIOError,
    NotReadyError,
    RandomGenError,
    ValidationError,
    VerificationMismatchError,
)
from .exec_manager import SnarkjsBackend
from .gen_input import BN254_SCALAR_FIELD, create_circuit_inputs
from .orchestrator import OrchestratorState, ProofBundle, RandomCircuitOrchestrator
from .permutation import MAX_POOL_SIZE, RangeSpec, compute_local_random_numbers, compute_permutation, permute
from .seed import PoseidonHasher, Seed, derive_seed, reduce_seeds
from .setup_driver import SetupDriver, complete_setup
from .timings import TimingLog

__version__ = "0.1.0"
