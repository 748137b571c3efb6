"""
Host-side twin of the circuit's Fisher-Yates shuffle.

The working array holds ``pool_size`` consecutive integers starting at
``start_value``. Positions are visited from the end toward index 1; the swap
index for position ``i`` is the next digit of the seed written in the
factorial number system:

    seed, j = divmod(seed, i + 1)

so every step consumes a value in ``[0, i]`` and the whole walk uses at most
``pool_size!`` worth of seed entropy (50! < 2**215, well inside one field
element). The result is a bijection of the range for every seed; callers read
only the first ``num_outputs`` entries, which are therefore always distinct.
"""

from dataclasses import dataclass
from typing import List, Optional

from .errors import ValidationError
from .seed import derive_seed

# Largest pool the circuits are generated for
MAX_POOL_SIZE = 50


@dataclass(frozen=True)
class RangeSpec:
    num_outputs: Optional[int]
    pool_size: int = MAX_POOL_SIZE
    start_value: int = 1

    def __post_init__(self):
        if self.num_outputs is None:
            raise ValidationError("numOutputs is required")
        for name in ("num_outputs", "pool_size", "start_value"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{name} must be an integer, got {value!r}")
        if self.pool_size < 1:
            raise ValidationError("poolSize must be >= 1")
        if self.pool_size > MAX_POOL_SIZE:
            raise ValidationError(f"poolSize must be <= {MAX_POOL_SIZE}")
        if self.num_outputs < 1:
            raise ValidationError("numOutputs must be >= 1")
        if self.num_outputs > self.pool_size:
            raise ValidationError("numOutputs must be <= poolSize")
        if self.start_value < 0:
            raise ValidationError("startValue must be >= 0")

    @property
    def end_value(self):
        return self.start_value + self.pool_size - 1


def compute_permutation(seed, pool_size, start_value=1) -> List[int]:
    """Full permutation of ``[start_value, start_value + pool_size - 1]``."""
    if isinstance(pool_size, bool) or not isinstance(pool_size, int) or pool_size < 1:
        raise ValidationError(f"pool_size must be a positive integer, got {pool_size!r}")
    if pool_size > MAX_POOL_SIZE:
        raise ValidationError(f"n must be <= {MAX_POOL_SIZE}")
    state = _seed_value(seed)

    values = list(range(start_value, start_value + pool_size))
    for i in range(pool_size - 1, 0, -1):
        state, j = divmod(state, i + 1)
        values[i], values[j] = values[j], values[i]
    return values


def permute(seed, range_spec: RangeSpec) -> List[int]:
    """First ``num_outputs`` entries of the seed's permutation."""
    if not isinstance(range_spec, RangeSpec):
        raise ValidationError("range_spec must be a RangeSpec")
    values = compute_permutation(seed, range_spec.pool_size, range_spec.start_value)
    return values[: range_spec.num_outputs]


def compute_local_random_numbers(hasher, inputs, num_outputs=None, pool_size=MAX_POOL_SIZE, start_value=1):
    """
    Expected circuit outputs for ``inputs`` without generating a proof.

    ``inputs`` is the ordered list of raw values hashed into the seed
    (block hash, user nonce and, when the circuit takes it, extra entropy).
    """
    range_spec = RangeSpec(num_outputs, pool_size, start_value)
    seed = derive_seed(hasher, inputs, 1)
    return permute(seed, range_spec)


def _seed_value(seed):
    # Accept a bare int or a Seed / sequence, whose first element drives the shuffle
    if isinstance(seed, bool):
        raise ValidationError("seed must be an integer")
    if isinstance(seed, int):
        value = seed
    else:
        try:
            value = int(seed[0])
        except (TypeError, IndexError, ValueError) as e:
            raise ValidationError(f"Invalid seed: {seed!r}") from e
    if value < 0:
        raise ValidationError("seed must be non-negative")
    return value
