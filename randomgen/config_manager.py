import json
import logging
import time
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Tuple

from .errors import FileIOError, ValidationError
from .gen_input import CIRCUIT_FAMILIES, MODULUS_FAMILY, PERMUTATION_FAMILY
from .permutation import RangeSpec

logger = logging.getLogger(__name__)

#############
# CONSTANTS #
#############

BUILD_DIR = Path("build")
CIRCUIT_DIR = Path("circuits")
CEREMONY_DIR = Path(".")
TEMPLATE_FILE = "random_template.circom"
VERIFICATION_KEY_FILE = "verification_key.json"
# Names the circuit whose zkey the shared verification key was exported from
VERIFICATION_KEY_OWNER_FILE = "verification_key.owner.json"
INFO_FILE = "info.json"

PTAU_GENERATE = "generate"
PTAU_DOWNLOAD = "download"

# Smallest and largest ceremonies published by the Hermez perpetual powers of tau
HEZ_MIN_POWER = 8
MAX_POWER = 28

# Entrypoints written next to the shared template, one per circuit family
CIRCOM_ENTRYPOINTS = {
    PERMUTATION_FAMILY: (
        "pragma circom 2.0.0;\n\n"
        'include "./{template}";\n\n'
        "// {num_outputs} unique output(s) in [{start_value}, {end_value}]\n"
        "component main {{public [{public}]}} = RandomCircuit({num_outputs}, {pool_size}, {start_value});\n"
    ),
    MODULUS_FAMILY: (
        "pragma circom 2.0.0;\n\n"
        'include "./{template}";\n\n'
        "// {num_outputs} output(s) reduced modulo the public input N\n"
        "component main {{public [{public}]}} = RandomModCircuit({num_outputs});\n"
    ),
}

# Never written back to disk by save_config
SECRET_FIELDS = ("ptau_entropy", "setup_entropy")


def default_circuit_name(family, num_outputs, pool_size, start_value):
    if family == MODULUS_FAMILY:
        return f"random_{num_outputs}"
    name = f"random_{num_outputs}_{pool_size}"
    if start_value != 1:
        name += f"_{start_value}"
    return name


def hez_ptau_name(power):
    return f"powersOfTau28_hez_final_{max(power, HEZ_MIN_POWER):02d}.ptau"


@dataclass(frozen=True)
class CircuitConfig:
    """
    Everything one orchestrator needs to locate, build and use a circuit.

    Unset names and entropy strings are filled in at construction; the
    instance is immutable afterwards.
    """

    circuit_name: Optional[str] = None
    family: str = PERMUTATION_FAMILY
    num_outputs: int = 5
    pool_size: int = 35
    start_value: int = 1
    power: int = 13
    ptau_name: Optional[str] = None
    ptau_source: str = PTAU_GENERATE
    ptau_entropy: Optional[str] = field(default=None, repr=False)
    setup_entropy: Optional[str] = field(default=None, repr=False)
    zkey_contributions: int = 1
    extra_entropy: bool = False
    cross_check_outputs: bool = False
    build_dir: Path = BUILD_DIR
    circuit_dir: Path = CIRCUIT_DIR
    ptau_dir: Path = CEREMONY_DIR
    circuit_path: Optional[Path] = None
    include_paths: Tuple[Path, ...] = ()

    def __post_init__(self):
        if self.family not in CIRCUIT_FAMILIES:
            raise ValidationError(f"Unknown circuit family: {self.family}")
        if self.family == PERMUTATION_FAMILY:
            # RangeSpec carries the range validation rules
            RangeSpec(self.num_outputs, self.pool_size, self.start_value)
        elif isinstance(self.num_outputs, bool) or not isinstance(self.num_outputs, int) or self.num_outputs < 1:
            raise ValidationError("numOutputs must be >= 1")

        if isinstance(self.power, bool) or not isinstance(self.power, int) or not 1 <= self.power <= MAX_POWER:
            raise ValidationError(f"power must be an integer in [1, {MAX_POWER}]")
        if self.ptau_source not in (PTAU_GENERATE, PTAU_DOWNLOAD):
            raise ValidationError(f"ptau_source must be '{PTAU_GENERATE}' or '{PTAU_DOWNLOAD}'")
        if self.zkey_contributions < 1:
            raise ValidationError("zkey_contributions must be >= 1")

        stamp = int(time.time() * 1000)
        defaults = {
            "circuit_name": default_circuit_name(self.family, self.num_outputs, self.pool_size, self.start_value),
            "ptau_name": f"pot{self.power}_final.ptau" if self.ptau_source == PTAU_GENERATE else hez_ptau_name(self.power),
            "ptau_entropy": f"random-entropy-ptau-{stamp}",
            "setup_entropy": f"random-entropy-setup-{stamp}",
        }
        for name, value in defaults.items():
            if getattr(self, name) is None:
                object.__setattr__(self, name, value)

        for name in ("build_dir", "circuit_dir", "ptau_dir"):
            object.__setattr__(self, name, Path(getattr(self, name)))
        object.__setattr__(self, "include_paths", tuple(Path(p) for p in self.include_paths))
        if self.circuit_path is not None:
            object.__setattr__(self, "circuit_path", Path(self.circuit_path))
            # circom names its outputs after the source file
            if self.circuit_path.stem != self.circuit_name:
                raise ValidationError(
                    f"circuit_path {self.circuit_path} does not match circuit_name {self.circuit_name}"
                )

    @property
    def ceremony_power(self):
        """Power of the ptau file actually used; Hermez downloads start at 2^8."""
        if self.ptau_source == PTAU_DOWNLOAD:
            return max(self.power, HEZ_MIN_POWER)
        return self.power

    @property
    def range_spec(self):
        if self.family != PERMUTATION_FAMILY:
            raise ValidationError(f"{self.family} circuits have no output range")
        return RangeSpec(self.num_outputs, self.pool_size, self.start_value)

    ##############
    # FILE PATHS #
    ##############

    @property
    def source_path(self):
        if self.circuit_path is not None:
            return self.circuit_path
        return self.circuit_dir / f"{self.circuit_name}.circom"

    @property
    def template_path(self):
        return self.source_path.parent / TEMPLATE_FILE

    @property
    def r1cs_path(self):
        return self.build_dir / f"{self.circuit_name}.r1cs"

    @property
    def wasm_dir(self):
        return self.build_dir / f"{self.circuit_name}_js"

    @property
    def wasm_path(self):
        return self.wasm_dir / f"{self.circuit_name}.wasm"

    @property
    def zkey_path(self):
        return self.build_dir / f"{self.circuit_name}_final.zkey"

    @property
    def vkey_path(self):
        return self.build_dir / VERIFICATION_KEY_FILE

    @property
    def vkey_owner_path(self):
        return self.build_dir / VERIFICATION_KEY_OWNER_FILE

    @property
    def ptau_path(self):
        return self.ptau_dir / self.ptau_name

    @property
    def info_path(self):
        return self.build_dir / INFO_FILE


def public_signal_names(config):
    names = ["blockHash", "userNonce"]
    if config.extra_entropy:
        names.append("extraEntropy")
    if config.family == MODULUS_FAMILY:
        names.append("N")
    return names


def circom_entrypoint(config):
    """Source of the circom main component for ``config``."""
    return CIRCOM_ENTRYPOINTS[config.family].format(
        template=TEMPLATE_FILE,
        public=", ".join(public_signal_names(config)),
        num_outputs=config.num_outputs,
        pool_size=config.pool_size,
        start_value=config.start_value,
        end_value=config.start_value + config.pool_size - 1,
    )


def write_circuit_entrypoint(config):
    path = config.source_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(circom_entrypoint(config), encoding="utf-8")
    logger.info("Generated circom entrypoint: %s", path)
    return path


def load_config(path, **overrides):
    """Read a CircuitConfig from a JSON file; keyword overrides win."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise FileIOError(f"Config file not found: {path}") from e
    except ValueError as e:
        raise FileIOError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must contain a JSON object")

    known = {f.name for f in fields(CircuitConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Unknown config keys in {path}: {', '.join(unknown)}")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return CircuitConfig(**data)


def save_config(config, path):
    """Write ``config`` as JSON, leaving out the entropy strings."""
    data = {}
    for f in fields(config):
        if f.name in SECRET_FIELDS:
            continue
        value = getattr(config, f.name)
        if isinstance(value, Path):
            value = str(value)
        elif isinstance(value, tuple):
            value = [str(v) for v in value]
        data[f.name] = value
    path = Path(path)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path
