r"""
Artifact registry and build planning.

Five artifact kinds form a small fixed graph:

    circuit source --> R1CS --+
                   \-> WASM   +--> ZKEY --> VKEY
              PTAU -----------+

R1CS and WASM come out of one circom run. PTAU is a shared, circuit
independent file that is created once and never regenerated. A present
artifact is rebuilt when anything upstream of it is rebuilt in the same pass,
or, for the compiled outputs, when the circuit source, the template it
includes or a circom file under the include paths is newer than they are.
The verification key is shared by every circuit of a build directory, so it
is also rebuilt when it was exported for another circuit.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import FrozenSet, List, Tuple

from .errors import ValidationError

logger = logging.getLogger(__name__)


class ArtifactKind(str, Enum):
    R1CS = "r1cs"
    WASM = "wasm"
    PTAU = "ptau"
    ZKEY = "zkey"
    VKEY = "verification_key"

    def __str__(self):
        return self.value


class BuildStep(str, Enum):
    COMPILE = "compile"
    CEREMONY = "ceremony"
    PROVING_KEY = "proving_key"
    VERIFICATION_KEY = "verification_key"

    def __str__(self):
        return self.value


DEPENDENCIES = {
    ArtifactKind.R1CS: frozenset(),
    ArtifactKind.WASM: frozenset(),
    ArtifactKind.PTAU: frozenset(),
    ArtifactKind.ZKEY: frozenset({ArtifactKind.R1CS, ArtifactKind.PTAU}),
    ArtifactKind.VKEY: frozenset({ArtifactKind.ZKEY}),
}

# Leaves first
BUILD_ORDER = (
    ArtifactKind.R1CS,
    ArtifactKind.WASM,
    ArtifactKind.PTAU,
    ArtifactKind.ZKEY,
    ArtifactKind.VKEY,
)

STEP_TARGETS = {
    BuildStep.COMPILE: (ArtifactKind.R1CS, ArtifactKind.WASM),
    BuildStep.CEREMONY: (ArtifactKind.PTAU,),
    BuildStep.PROVING_KEY: (ArtifactKind.ZKEY,),
    BuildStep.VERIFICATION_KEY: (ArtifactKind.VKEY,),
}

# What validate() checks: the build-directory files needed to prove and verify
PROVING_ARTIFACTS = (ArtifactKind.R1CS, ArtifactKind.WASM, ArtifactKind.ZKEY, ArtifactKind.VKEY)

REASON_MISSING = "missing"
REASON_STALE = "stale"
REASON_FORCED = "forced"


@dataclass(frozen=True)
class ArtifactDescriptor:
    kind: ArtifactKind
    identity: str
    path: Path
    depends_on: FrozenSet[ArtifactKind] = frozenset()

    @property
    def present_on_disk(self):
        return self.path.is_file()

    @property
    def name(self):
        return self.kind.value

    def __str__(self):
        return f"{self.kind.value} ({self.path})"


@dataclass(frozen=True)
class ValidationReport:
    complete: bool
    missing: Tuple[ArtifactDescriptor, ...]

    @property
    def missing_kinds(self):
        return [d.kind for d in self.missing]

    @property
    def missing_files(self):
        return [str(d.path) for d in self.missing]


@dataclass(frozen=True)
class BuildAction:
    step: BuildStep
    targets: Tuple[ArtifactDescriptor, ...]
    reason: str

    def __str__(self):
        names = ", ".join(t.kind.value for t in self.targets)
        return f"{self.step.value} -> {names} ({self.reason})"


class ArtifactRegistry:
    """Typed view of the artifacts a CircuitConfig refers to."""

    def __init__(self, config):
        self.config = config
        name = config.circuit_name
        paths = {
            ArtifactKind.R1CS: (name, config.r1cs_path),
            ArtifactKind.WASM: (name, config.wasm_path),
            ArtifactKind.PTAU: (config.ptau_name, config.ptau_path),
            ArtifactKind.ZKEY: (name, config.zkey_path),
            ArtifactKind.VKEY: (name, config.vkey_path),
        }
        self._descriptors = {
            kind: ArtifactDescriptor(kind, identity, path, DEPENDENCIES[kind])
            for kind, (identity, path) in paths.items()
        }

    def __getitem__(self, kind):
        return self._descriptors[ArtifactKind(kind)]

    def __iter__(self):
        return (self._descriptors[kind] for kind in BUILD_ORDER)

    @property
    def source_path(self):
        return self.config.source_path

    def downstream(self, kind):
        """Every kind that depends on ``kind``, directly or transitively."""
        kind = ArtifactKind(kind)
        found = set()
        frontier = [kind]
        while frontier:
            current = frontier.pop()
            for other, deps in DEPENDENCIES.items():
                if current in deps and other not in found:
                    found.add(other)
                    frontier.append(other)
        return found

    def validate(self) -> ValidationReport:
        missing = tuple(self[kind] for kind in PROVING_ARTIFACTS if not self[kind].present_on_disk)
        if missing:
            logger.info("Missing artifacts: %s", ", ".join(d.name for d in missing))
        return ValidationReport(complete=not missing, missing=missing)

    def source_files(self):
        """The circuit source and every circom file it may include."""
        config = self.config
        files = [config.source_path, config.template_path]
        for include in config.include_paths:
            if include.is_dir():
                files.extend(sorted(include.rglob("*.circom")))
        return [path for path in files if path.is_file()]

    def source_is_newer(self, kind):
        target = self[kind].path
        if not self.source_path.is_file() or not target.is_file():
            return False
        newest = max(path.stat().st_mtime for path in self.source_files())
        return newest > target.stat().st_mtime

    def vkey_owner(self):
        """Circuit name the verification key was exported for, or None if unknown."""
        try:
            with open(self.config.vkey_owner_path, encoding="utf-8") as f:
                owner = json.load(f)
        except (OSError, ValueError):
            return None
        if not isinstance(owner, dict):
            return None
        return owner.get("circuit_name")

    def plan_build(self, force=()) -> List[BuildAction]:
        """
        Ordered build actions for this pass.

        ``force`` names kinds to rebuild even when present and fresh; their
        downstream artifacts follow through the staleness rule.
        """
        force = {ArtifactKind(k) for k in force}
        if ArtifactKind.PTAU in force:
            raise ValidationError("The powers of tau file is shared and is never regenerated")

        reasons = {}
        for kind in BUILD_ORDER:
            if kind == ArtifactKind.PTAU:
                continue
            descriptor = self[kind]
            if kind in force:
                reasons[kind] = REASON_FORCED
            elif not descriptor.present_on_disk:
                reasons[kind] = REASON_MISSING
            elif descriptor.depends_on & set(reasons):
                reasons[kind] = REASON_STALE
            elif kind in (ArtifactKind.R1CS, ArtifactKind.WASM) and self.source_is_newer(kind):
                reasons[kind] = REASON_STALE
            elif kind == ArtifactKind.VKEY and self.vkey_owner() != self.config.circuit_name:
                logger.info("%s was not exported for %s", descriptor, self.config.circuit_name)
                reasons[kind] = REASON_STALE

        # R1CS and WASM are produced together, so one compile rebuilds both
        compiled = (ArtifactKind.R1CS, ArtifactKind.WASM)
        if any(k in reasons for k in compiled):
            for k in compiled:
                reasons.setdefault(k, REASON_STALE)
            for k in self.downstream(ArtifactKind.R1CS):
                if k != ArtifactKind.PTAU:
                    reasons.setdefault(k, REASON_STALE)

        if ArtifactKind.ZKEY in reasons and not self[ArtifactKind.PTAU].present_on_disk:
            reasons[ArtifactKind.PTAU] = REASON_MISSING

        actions = []
        for step, targets in STEP_TARGETS.items():
            scheduled = [k for k in targets if k in reasons]
            if not scheduled:
                continue
            reason = _strongest(reasons[k] for k in scheduled)
            actions.append(BuildAction(step, tuple(self[k] for k in targets), reason))

        for action in actions:
            logger.debug("Planned %s", action)
        return actions


def _strongest(reasons):
    order = (REASON_FORCED, REASON_MISSING, REASON_STALE)
    reasons = set(reasons)
    for reason in order:
        if reason in reasons:
            return reason
    return REASON_STALE
