"""
Seed derivation.

A seed is the output of the circuit's PoseidonEx component evaluated on the
canonical public inputs. PoseidonEx with ``t = nInputs + 1`` can emit at most
``t`` outputs, so when more outputs are requested than the real inputs allow,
zero-valued dummy inputs are appended exactly as the circuit does:

    padding = max(0, output_count - len(inputs) - 1)

A different padding gives a seed that no longer matches the one computed
inside the circuit, even though every proof stays individually valid.
"""

import json
import logging
import os
import subprocess

from .errors import ExternalToolError, NotReadyError, ValidationError
from .gen_input import BN254_SCALAR_FIELD, to_field_element, truncate_to_31_bytes, canonicalize

logger = logging.getLogger(__name__)

MIN_SEED_INPUTS = 2
MAX_SEED_INPUTS = 4

# Evaluates circomlibjs Poseidon; argv[1] is a JSON array [inputs, nOuts]
_POSEIDON_SCRIPT = r"""
const { buildPoseidon } = require("circomlibjs");
(async () => {
  const [inputs, nOuts] = JSON.parse(process.argv[1]);
  const poseidon = await buildPoseidon();
  const F = poseidon.F;
  let out = poseidon(inputs.map((x) => BigInt(x)), F.zero, nOuts);
  if (nOuts === 1) {
    out = [out];
  }
  process.stdout.write(JSON.stringify(out.map((x) => F.toString(x))));
})().catch((err) => {
  process.stderr.write(String(err && err.message ? err.message : err));
  process.exit(1);
});
"""


class Seed(tuple):
    """Immutable sequence of field elements produced by one hash call."""

    def __new__(cls, values):
        values = tuple(int(v) for v in values)
        if not values:
            raise ValidationError("A seed needs at least one value")
        for value in values:
            if not 0 <= value < BN254_SCALAR_FIELD:
                raise ValidationError(f"Seed value out of field range: {value}")
        return super().__new__(cls, values)

    def __repr__(self):
        return f"Seed({list(self)!r})"


class PoseidonHasher:
    """
    Handle on the circomlibjs Poseidon implementation.

    The handle must be initialized once before hashing; ``initialize`` checks
    node and circomlibjs and is safe to call repeatedly. ``node_path`` is
    exported as NODE_PATH so a project-local ``node_modules`` can be used.
    """

    field_modulus = BN254_SCALAR_FIELD

    def __init__(self, node="node", node_path=None, timeout=None):
        self.node = node
        self.node_path = node_path
        self.timeout = timeout
        self._ready = False

    @property
    def ready(self):
        return self._ready

    def initialize(self):
        if self._ready:
            return self
        logger.info("Initializing Poseidon hash handle (%s)", self.node)
        self._evaluate([0], 1)
        self._ready = True
        return self

    def hash(self, inputs, n_outs):
        if not self._ready:
            raise NotReadyError("Poseidon hasher is not initialized; call initialize() first")
        if len(inputs) + 1 < n_outs:
            raise ValidationError(
                f"Poseidon with {len(inputs)} inputs cannot produce {n_outs} outputs"
            )
        return self._evaluate(inputs, n_outs)

    def _evaluate(self, inputs, n_outs):
        payload = json.dumps([[str(int(x)) for x in inputs], int(n_outs)])
        env = dict(os.environ)
        if self.node_path:
            env["NODE_PATH"] = str(self.node_path)
        cmd = [self.node, "-e", _POSEIDON_SCRIPT, payload]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(f"{self.node} not found: {e}", tool=self.node) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(f"Poseidon evaluation timed out after {self.timeout}s", tool=self.node) from e

        if result.returncode != 0:
            raise ExternalToolError(
                f"Poseidon evaluation failed: {result.stderr.strip()}",
                tool=self.node,
                returncode=result.returncode,
                output=result.stderr,
            )
        try:
            return [int(x) for x in json.loads(result.stdout)]
        except ValueError as e:
            raise ExternalToolError(
                f"Unexpected Poseidon output: {result.stdout[:200]!r}",
                tool=self.node,
                output=result.stdout,
            ) from e


def padding_count(real_inputs, output_count):
    return max(0, output_count - real_inputs - 1)


def derive_seed(hasher, inputs, output_count):
    """
    Hash 2 to 4 raw inputs into ``output_count`` field elements.

    Inputs are canonicalized and truncated to 31 bytes before hashing.
    """
    if output_count is None:
        raise ValidationError("numOutputs is required")
    if isinstance(output_count, bool) or not isinstance(output_count, int) or output_count < 1:
        raise ValidationError(f"output count must be a positive integer, got {output_count!r}")
    if inputs is None:
        raise ValidationError("inputs is required")

    inputs = list(inputs)
    if not MIN_SEED_INPUTS <= len(inputs) <= MAX_SEED_INPUTS:
        raise ValidationError(
            f"Seed derivation takes {MIN_SEED_INPUTS} to {MAX_SEED_INPUTS} inputs, got {len(inputs)}"
        )

    elements = [to_field_element(value, f"inputs[{i}]") for i, value in enumerate(inputs)]
    elements.extend([0] * padding_count(len(elements), output_count))

    values = hasher.hash(elements, output_count)
    if len(values) != output_count:
        raise ExternalToolError(
            f"Hash primitive returned {len(values)} values, expected {output_count}"
        )
    return Seed(values)


def reduce_seeds(seed, modulus):
    """Modulus-family outputs: every seed value reduced mod N (N truncated to 31 bytes)."""
    if modulus is None:
        raise ValidationError("N is required")
    n = truncate_to_31_bytes(canonicalize(modulus, "N"))
    if n == 0:
        raise ValidationError("N must be non-zero")
    if isinstance(seed, int):
        seed = [seed]
    return [int(value) % n for value in seed]
