"""
Runs the build plan against the external toolchain.

Scheduled targets are removed before any step runs, and every step writes
to a ``.partial`` file that is renamed into place only once the tool has
succeeded. A step that fails therefore leaves its target missing, never
half-written or stale, and the next pass picks it up again.
"""

import json
import logging
import os
import shutil
import time

from .artifacts import ArtifactKind, ArtifactRegistry, BuildStep
from .config_manager import PTAU_DOWNLOAD, write_circuit_entrypoint
from .errors import ArtifactMissingError, FileIOError, ValidationError
from .exec_manager import SnarkjsBackend

logger = logging.getLogger(__name__)

CONTRIBUTION_NAME = "randomgen"


class SetupDriver:

    def __init__(self, config, backend=None, registry=None, timings=None):
        self.config = config
        self.backend = backend if backend is not None else SnarkjsBackend()
        self.registry = registry if registry is not None else ArtifactRegistry(config)
        self.timings = timings
        # BuildActions run by the most recent ensure_artifacts() call
        self.executed = []
        self._power_checked = False

    def artifact_paths(self):
        return {descriptor.kind: descriptor.path for descriptor in self.registry}

    def ensure_artifacts(self, force=()):
        """Build whatever the registry reports missing or stale; return all artifact paths."""
        actions = self.registry.plan_build(force)
        self.executed = []
        self._power_checked = False
        if not actions:
            logger.info("Artifacts for %s are up to date", self.config.circuit_name)
            return self.artifact_paths()

        logger.info("Setting up %s circuit (%d step(s))", self.config.circuit_name, len(actions))
        self.config.build_dir.mkdir(parents=True, exist_ok=True)
        self._invalidate(actions)

        start = time.perf_counter()
        for index, action in enumerate(actions, start=1):
            logger.info("STEP %d: %s", index, action)
            if action.step in (BuildStep.CEREMONY, BuildStep.PROVING_KEY):
                self._check_power()
            self._steps[action.step](self)
            self.executed.append(action)
        elapsed = time.perf_counter() - start

        if self.timings is not None:
            self.timings.time_append("setup", elapsed)
        logger.info("Setup of %s complete in %.2fs", self.config.circuit_name, elapsed)
        return self.artifact_paths()

    #########
    # STEPS #
    #########

    def compile(self):
        config = self.config
        source = config.source_path
        if not source.is_file():
            if not config.template_path.is_file():
                raise ArtifactMissingError(
                    f"Circuit source {source} not found and no {config.template_path.name} to generate it from"
                )
            write_circuit_entrypoint(config)

        staging = config.build_dir / f".{config.circuit_name}.staging"
        shutil.rmtree(staging, ignore_errors=True)
        try:
            r1cs_path, wasm_path = self.backend.compile_circuit(source, staging, config.include_paths)
            if config.wasm_dir.exists():
                shutil.rmtree(config.wasm_dir)
            _publish(wasm_path.parent, config.wasm_dir)
            _publish(r1cs_path, config.r1cs_path)
            sym_path = r1cs_path.with_suffix(".sym")
            if sym_path.is_file():
                _publish(sym_path, config.build_dir / sym_path.name)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        logger.info("Circuit compiled: %s", config.r1cs_path)

    def ceremony(self):
        config = self.config
        ptau = config.ptau_path
        if ptau.is_file():
            logger.info("Powers of tau file found: %s", ptau)
            return
        ptau.parent.mkdir(parents=True, exist_ok=True)
        partial = _partial(ptau)

        if config.ptau_source == PTAU_DOWNLOAD:
            _remove(partial)
            try:
                downloaded = self.backend.download_ceremony(config.power, partial)
                _publish(downloaded, ptau)
            finally:
                _remove(partial)
            logger.info("Powers of tau file downloaded: %s", ptau)
            return

        initial = ptau.with_name(f"{ptau.stem}_0000.ptau")
        contributed = ptau.with_name(f"{ptau.stem}_0001.ptau")
        try:
            self.backend.new_accumulator(config.power, initial)
            self.backend.contribute_accumulator(initial, contributed, config.ptau_entropy, CONTRIBUTION_NAME)
            self.backend.prepare_phase2(contributed, partial)
            _publish(partial, ptau)
        finally:
            for path in (initial, contributed, partial):
                _remove(path)
        logger.info("Powers of tau file created: %s", ptau)

    def proving_key(self):
        config = self.config
        if not config.ptau_path.is_file():
            raise ArtifactMissingError(f"Powers of tau file not found: {config.ptau_path}")

        name = config.circuit_name
        initial = config.build_dir / f"{name}_0000.zkey"
        partial = _partial(config.zkey_path)
        intermediates = [initial, partial]
        try:
            self.backend.new_proving_key(config.r1cs_path, config.ptau_path, initial)
            current = initial
            for index in range(1, config.zkey_contributions + 1):
                if index == config.zkey_contributions:
                    target = partial
                else:
                    target = config.build_dir / f"{name}_{index:04d}.zkey"
                    intermediates.append(target)
                entropy = config.setup_entropy if index == 1 else f"{config.setup_entropy}-{index}"
                self.backend.contribute_proving_key(current, target, entropy, f"{CONTRIBUTION_NAME} {index}")
                current = target
            _publish(partial, config.zkey_path)
        finally:
            for path in intermediates:
                _remove(path)
        logger.info("Groth16 setup complete: %s", config.zkey_path)

    def verification_key(self):
        config = self.config
        partial = _partial(config.vkey_path)
        owner_partial = _partial(config.vkey_owner_path)
        try:
            self.backend.export_verification_key(config.zkey_path, partial)
            _write_json(owner_partial, {"circuit_name": config.circuit_name, "zkey": config.zkey_path.name})
            _publish(partial, config.vkey_path)
            _publish(owner_partial, config.vkey_owner_path)
        finally:
            _remove(partial)
            _remove(owner_partial)
        logger.info("Verification key exported: %s", config.vkey_path)

    _steps = {
        BuildStep.COMPILE: compile,
        BuildStep.CEREMONY: ceremony,
        BuildStep.PROVING_KEY: proving_key,
        BuildStep.VERIFICATION_KEY: verification_key,
    }

    ###########
    # HELPERS #
    ###########

    def _invalidate(self, actions):
        for action in actions:
            for target in action.targets:
                if target.kind == ArtifactKind.PTAU or not target.present_on_disk:
                    continue
                logger.info("Removing outdated %s", target)
                _remove(target.path)
                if target.kind == ArtifactKind.VKEY:
                    _remove(self.config.vkey_owner_path)

    def _check_power(self):
        if self._power_checked:
            return
        info = self.backend.r1cs_info(self.config.r1cs_path, self.config.info_path)
        needed = info.get("setup_size")
        power = self.config.ceremony_power
        if needed is not None and needed > power:
            raise ValidationError(
                f"Circuit {self.config.circuit_name} needs power >= {needed}, ceremony power is {power}"
            )
        self._power_checked = True


def complete_setup(config, backend=None, force=(), timings=None):
    return SetupDriver(config, backend=backend, timings=timings).ensure_artifacts(force)


def _partial(path):
    return path.with_name(path.name + ".partial")


def _publish(source, target):
    try:
        os.replace(source, target)
    except OSError as e:
        raise FileIOError(f"Cannot move {source} to {target}: {e}") from e


def _write_json(path, data):
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        raise FileIOError(f"Cannot write {path}: {e}") from e


def _remove(path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        raise FileIOError(f"Cannot remove {path}: {e}") from e
