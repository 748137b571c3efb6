"""
Circuit input canonicalization.

Every public value accepted by the random circuits (block hash, user nonce,
optional extra entropy, optional modulus N) may be given as:

    - an int (or any numbers.Integral)
    - bytes / bytearray, read big-endian
    - a str with a 0x / 0X prefix, read as hex
    - any other str, read as decimal

The prefix is checked before decimal parsing, so "0x10" is 16 and "10" is 10.
The canonical value is the low 248 bits (31 bytes) of the number, which keeps
it below the BN254 scalar field prime.
"""

import numbers
import random
import re

from .errors import ValidationError

# BN254 scalar field; Poseidon and every circuit signal live here
BN254_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

MAX_31_BYTES = (1 << 248) - 1

PERMUTATION_FAMILY = "permutation"
MODULUS_FAMILY = "modulus"
CIRCUIT_FAMILIES = (PERMUTATION_FAMILY, MODULUS_FAMILY)

# snake_case spellings accepted next to the circuit signal names
INPUT_ALIASES = {
    "block_hash": "blockHash",
    "user_nonce": "userNonce",
    "extra_entropy": "extraEntropy",
    "modulus": "N",
}

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_DEC_RE = re.compile(r"^[0-9]+$")


def canonicalize(value, name="value"):
    """Return ``value`` as a non-negative int (no truncation)."""
    if value is None:
        raise ValidationError(f"{name} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a number, not a bool")

    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if not raw:
            raise ValidationError(f"{name} must not be empty")
        number = int.from_bytes(raw, "big")
    elif isinstance(value, numbers.Integral):
        number = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            digits = text[2:]
            if not _HEX_RE.match(digits):
                raise ValidationError(f"{name} is not a valid hex string: {value!r}")
            number = int(digits, 16)
        else:
            if not _DEC_RE.match(text):
                raise ValidationError(f"{name} is not a valid decimal string: {value!r}")
            number = int(text)
    else:
        raise ValidationError(f"{name} has unsupported type {type(value).__name__}")

    if number < 0:
        raise ValidationError(f"{name} must be non-negative")
    return number


def truncate_to_31_bytes(value):
    return value & MAX_31_BYTES


def to_field_element(value, name="value"):
    return truncate_to_31_bytes(canonicalize(value, name))


def circuit_signal_names(family=PERMUTATION_FAMILY, extra_entropy=False):
    """Input signal names, in the order the circuit declares them."""
    if family not in CIRCUIT_FAMILIES:
        raise ValidationError(f"Unknown circuit family: {family}")
    names = ["blockHash", "userNonce"]
    if extra_entropy:
        names.append("extraEntropy")
    if family == MODULUS_FAMILY:
        names.append("N")
    return names


def normalize_input_keys(inputs):
    if inputs is None:
        raise ValidationError("inputs is required")
    normalized = {}
    for key, value in inputs.items():
        signal = INPUT_ALIASES.get(key, key)
        if signal in normalized:
            raise ValidationError(f"inputs.{signal} given more than once")
        normalized[signal] = value
    return normalized


def create_circuit_inputs(inputs, family=PERMUTATION_FAMILY, extra_entropy=False):
    """
    Build the input mapping handed to the prover.

    Values are canonicalized, truncated to 31 bytes and emitted as decimal
    strings, the only encoding snarkjs accepts for big numbers.
    """
    normalized = normalize_input_keys(inputs)
    names = circuit_signal_names(family, extra_entropy)

    unexpected = sorted(set(normalized) - set(names))
    if unexpected:
        raise ValidationError(f"Unexpected circuit inputs: {', '.join(unexpected)}")

    circuit_inputs = {}
    for name in names:
        if normalized.get(name) is None:
            raise ValidationError(f"inputs.{name} is required")
        circuit_inputs[name] = str(to_field_element(normalized[name], f"inputs.{name}"))

    if family == MODULUS_FAMILY and circuit_inputs["N"] == "0":
        raise ValidationError("inputs.N must be non-zero")
    return circuit_inputs


def generate_input(family=PERMUTATION_FAMILY, extra_entropy=False, modulus=1000, rng=None):
    """Random but well-formed circuit inputs, used by the bench mode."""
    rng = rng or random.Random()
    data = {
        "blockHash": hex(rng.getrandbits(256)),
        "userNonce": rng.randint(0, 2**32 - 1),
    }
    if extra_entropy:
        data["extraEntropy"] = rng.getrandbits(248)
    if family == MODULUS_FAMILY:
        data["N"] = modulus
    return create_circuit_inputs(data, family, extra_entropy)

