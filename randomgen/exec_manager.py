import json
import logging
import subprocess
import tempfile
from pathlib import Path

import wget

from .config_manager import HEZ_MIN_POWER
from .errors import ExternalToolError
from .r1cs_parser import r1cs_parse, strip_ansi

logger = logging.getLogger(__name__)

HEZ_PTAU_URL = "https://storage.googleapis.com/zkevm/ptau/powersOfTau28_hez_final_{size}.ptau"

# Tail of tool output kept in error messages
ERROR_TAIL = 2000


class SnarkjsBackend:
    """
    circom / snarkjs collaborator calls.

    Every method shells out to the tool and raises ExternalToolError with the
    tool's own message when a step fails.
    ``verify`` is the exception: an invalid proof is a normal False.
    """

    def __init__(self, snarkjs="snarkjs", circom="circom", timeout=None):
        self.snarkjs = snarkjs
        self.circom = circom
        self.timeout = timeout

    ############
    # COMPILER #
    ############

    def compile_circuit(self, source_path, output_dir, include_paths=()):
        source_path = Path(source_path)
        output_dir = Path(output_dir)
        if not source_path.is_file():
            raise ExternalToolError(f"Circuit file not found: {source_path}", tool=self.circom)
        output_dir.mkdir(parents=True, exist_ok=True)

        name = source_path.stem
        cmd = [self.circom, str(source_path), "--r1cs", "--wasm", "--sym", "-o", str(output_dir)]
        for include in include_paths:
            cmd += ["-l", str(include)]
        logger.info("Compiling %s...", source_path)
        self._run(cmd)

        r1cs_path = output_dir / f"{name}.r1cs"
        wasm_path = output_dir / f"{name}_js" / f"{name}.wasm"
        for path in (r1cs_path, wasm_path):
            if not path.is_file():
                raise ExternalToolError(f"circom did not produce {path}", tool=self.circom)
        return r1cs_path, wasm_path

    def r1cs_info(self, r1cs_path, output_path=None):
        return r1cs_parse(r1cs_path, output_path, snarkjs=self.snarkjs)

    #######################
    # PHASE 1 (UNIVERSAL) #
    #######################

    def new_accumulator(self, power, output_path):
        logger.info("Generating initial ptau with power %s...", power)
        self._run([self.snarkjs, "powersoftau", "new", "bn128", str(power), str(output_path)])
        return Path(output_path)

    def contribute_accumulator(self, input_path, output_path, entropy, name="randomgen"):
        logger.info("Contributing to powers of tau...")
        self._run([
            self.snarkjs, "powersoftau", "contribute", str(input_path), str(output_path),
            f"--name={name}", f"-e={entropy}",
        ])
        return Path(output_path)

    def prepare_phase2(self, input_path, output_path):
        logger.info("Preparing phase 2...")
        self._run([self.snarkjs, "powersoftau", "prepare", "phase2", str(input_path), str(output_path)])
        return Path(output_path)

    def download_ceremony(self, power, output_path):
        """Fetch the Hermez perpetual powers of tau file for ``power``."""
        size = f"{max(power, HEZ_MIN_POWER):02d}"
        url = HEZ_PTAU_URL.format(size=size)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading ceremony of size 2^%s from %s...", size, url)
        try:
            filename = wget.download(url, out=str(output_path), bar=None)
        except (OSError, ValueError) as e:
            raise ExternalToolError(f"Ceremony download failed: {e}", tool="wget") from e
        return Path(filename)

    ####################################
    # PHASE 2 (CIRCUIT-SPECIFIC SETUP) #
    ####################################

    def new_proving_key(self, r1cs_path, ptau_path, output_path):
        logger.info("Running groth16 circuit-specific setup...")
        self._run([self.snarkjs, "groth16", "setup", str(r1cs_path), str(ptau_path), str(output_path)])
        return Path(output_path)

    def contribute_proving_key(self, input_path, output_path, entropy, name="randomgen"):
        self._run([
            self.snarkjs, "zkey", "contribute", str(input_path), str(output_path),
            f"--name={name}", f"-e={entropy}",
        ])
        return Path(output_path)

    def export_verification_key(self, zkey_path, output_path):
        logger.info("Exporting verification key...")
        self._run([self.snarkjs, "zkey", "export", "verificationkey", str(zkey_path), str(output_path)])
        with Path(output_path).open("r", encoding="utf-8") as f:
            return json.load(f)

    ##################
    # GROTH16 PROVER #
    ##################

    def prove(self, circuit_inputs, wasm_path, zkey_path):
        with tempfile.TemporaryDirectory(prefix="randomgen-prove-") as tmp:
            tmp = Path(tmp)
            input_path = tmp / "input.json"
            proof_path = tmp / "proof.json"
            public_path = tmp / "public.json"
            input_path.write_text(json.dumps(circuit_inputs), encoding="utf-8")

            self._run([
                self.snarkjs, "groth16", "fullprove", str(input_path), str(wasm_path), str(zkey_path),
                str(proof_path), str(public_path),
            ])
            try:
                proof = json.loads(proof_path.read_text(encoding="utf-8"))
                public_signals = json.loads(public_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                raise ExternalToolError(f"snarkjs fullprove produced unreadable output: {e}", tool=self.snarkjs) from e
        return proof, public_signals

    ####################
    # GROTH16 VERIFIER #
    ####################

    def verify(self, verification_key, public_signals, proof):
        with tempfile.TemporaryDirectory(prefix="randomgen-verify-") as tmp:
            tmp = Path(tmp)
            vkey_path = tmp / "verification_key.json"
            public_path = tmp / "public.json"
            proof_path = tmp / "proof.json"
            vkey_path.write_text(json.dumps(verification_key), encoding="utf-8")
            public_path.write_text(json.dumps(public_signals), encoding="utf-8")
            proof_path.write_text(json.dumps(proof), encoding="utf-8")

            result = self._run(
                [self.snarkjs, "groth16", "verify", str(vkey_path), str(public_path), str(proof_path)],
                check=False,
            )
        return parse_verify_output(result.returncode, result.stdout + result.stderr)

    ###########
    # HELPERS #
    ###########

    def _run(self, cmd, check=True):
        logger.debug("Running: %s", " ".join(_redact(cmd)))
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(f"{cmd[0]} not found: {e}", tool=cmd[0]) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(f"{cmd[0]} timed out after {self.timeout}s", tool=cmd[0]) from e

        if result.stdout:
            logger.debug(strip_ansi(result.stdout).rstrip())
        if check and result.returncode != 0:
            output = strip_ansi(result.stderr or result.stdout or "").strip()
            raise ExternalToolError(
                f"{' '.join(_redact(cmd[:3]))} failed (exit {result.returncode}): {output[-ERROR_TAIL:]}",
                tool=cmd[0],
                returncode=result.returncode,
                output=output,
            )
        return result


def parse_verify_output(returncode, output):
    """snarkjs prints OK! for a valid proof; anything else is a rejection."""
    text = strip_ansi(output)
    valid = returncode == 0 and "OK!" in text
    if not valid:
        logger.info("snarkjs rejected the proof: %s", text.strip()[-200:])
    return valid


def _redact(cmd):
    # Keep entropy out of the logs
    return [c if not c.startswith("-e=") else "-e=***" for c in cmd]
