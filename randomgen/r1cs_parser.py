import json
import logging
import re
import subprocess
from pathlib import Path

from .errors import ArtifactMissingError, ExternalToolError

logger = logging.getLogger(__name__)

#####################################################
#   DISCLAIMER: Please note that this module        #
#       is very conditioned by the output format    #
#       provided by "snarkjs".                      #
#####################################################

ANSI_RE = re.compile(r'\x1b\[[0-9;]*m')


def strip_ansi(text: str) -> str:
    """Remove ANSI escape codes from snarkjs output."""
    return ANSI_RE.sub('', text)


def run_snarkjs_inspect(r1cs_path: Path, snarkjs: str = "snarkjs") -> str:
    """
    Executes: snarkjs r1cs info <file>
    Returns stdout as a string.
    """
    cmd = [snarkjs, "r1cs", "info", str(r1cs_path)]
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(f"{snarkjs} not found: {e}", tool=snarkjs) from e
    except subprocess.CalledProcessError as e:
        raise ExternalToolError(
            f"snarkjs r1cs info failed: {strip_ansi(e.stderr or '').strip()}",
            tool=snarkjs,
            returncode=e.returncode,
            output=e.stderr or "",
        ) from e

    return result.stdout


def parse_inspect_output(text: str) -> dict:
    results = {}

    for line in strip_ansi(text).splitlines():
        if "snarkJS:" not in line:
            continue

        _, after = line.split("snarkJS:", 1)
        after = after.strip()

        if ":" not in after:
            continue

        key, value = after.split(":", 1)
        key = key.strip()
        value = value.strip()

        # Normalize key
        key_norm = (
            key.lower()
               .replace("# of ", "")
               .replace(" ", "_")
               .replace("-", "_")
        )

        if value.isdigit():
            value = int(value)

        results[key_norm] = value

    if isinstance(results.get("constraints"), int):
        results["setup_size"] = required_power(results)

    return results


def required_power(info: dict) -> int:
    """
    Smallest ceremony power that fits the circuit.

    snarkjs sizes the Groth16 domain over constraints plus public inputs and
    outputs, and rejects a ceremony whose power is below the bit length of
    that total.
    """
    total = (
        info.get("constraints", 0)
        + info.get("public_inputs", 0)
        + info.get("outputs", 0)
    )
    return max(1, total.bit_length())


def r1cs_parse(r1cs_file_path, output_file_path=None, snarkjs="snarkjs"):
    r1cs_file_path = Path(r1cs_file_path)
    if not r1cs_file_path.is_file():
        raise ArtifactMissingError(f"r1cs file {r1cs_file_path} not found")

    parsed = parse_inspect_output(run_snarkjs_inspect(r1cs_file_path, snarkjs))

    if output_file_path is not None:
        output_file_path = Path(output_file_path)
        output_file_path.write_text(json.dumps(parsed, indent=2), encoding="utf-8")
        logger.info("Circuit info written to %s", output_file_path)
    return parsed
