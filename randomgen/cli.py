#!/usr/bin/env python3

import argparse
import logging
import sys
from pathlib import Path

from .artifacts import ArtifactKind
from .config_manager import CircuitConfig, load_config
from .errors import RandomGenError, ValidationError
from .gen_input import MODULUS_FAMILY, generate_input
from .info import find_build_dirs, format_instance, summarize, write_summary
from .orchestrator import RandomCircuitOrchestrator
from .seed import PoseidonHasher

MODES = ("setup", "prove", "verify", "local", "bench", "info")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Keyword arguments of CircuitConfig that can be given on the command line
CONFIG_ARGS = (
    "circuit_name", "family", "num_outputs", "pool_size", "start_value", "power",
    "ptau_source", "build_dir", "circuit_dir", "ptau_dir",
)

########
# MAIN #
########

def build_parser():
    parser = argparse.ArgumentParser(
        description="Verifiable unique random numbers backed by circom/snarkjs Groth16 proofs."
    )

    parser.add_argument(
        "-m", "--mode",
        required=True,
        choices=MODES,
        help="Mode of execution"
    )

    parser.add_argument(
        "-c", "--config",
        required=False,
        help="JSON file with the circuit configuration"
    )

    parser.add_argument(
        "-f", "--force",
        required=False,
        action="store_true",
        help="Recompile the circuit and rebuild its keys even if they are up to date"
    )

    parser.add_argument(
        "-p", "--prover",
        required=False,
        type=int,
        default=1,
        help="Number of iters for prover in bench mode (default=1)"
    )

    parser.add_argument(
        "-v", "--verifier",
        required=False,
        type=int,
        default=1,
        help="Number of iters for verifier in bench mode (default=1)"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default=INFO)"
    )

    circuit = parser.add_argument_group("circuit")
    circuit.add_argument("--circuit-name", dest="circuit_name")
    circuit.add_argument("--family", choices=("permutation", "modulus"))
    circuit.add_argument("-n", "--num-outputs", dest="num_outputs", type=int)
    circuit.add_argument("--pool-size", dest="pool_size", type=int)
    circuit.add_argument("--start-value", dest="start_value", type=int)
    circuit.add_argument("--power", type=int)
    circuit.add_argument("--ptau-source", dest="ptau_source", choices=("generate", "download"))
    circuit.add_argument("--build-dir", dest="build_dir")
    circuit.add_argument("--circuit-dir", dest="circuit_dir")
    circuit.add_argument("--ptau-dir", dest="ptau_dir")

    inputs = parser.add_argument_group("inputs")
    inputs.add_argument("--block-hash", dest="block_hash")
    inputs.add_argument("--user-nonce", dest="user_nonce")
    inputs.add_argument("--extra-entropy", dest="extra_entropy")
    inputs.add_argument("-N", "--modulus", dest="modulus")

    files = parser.add_argument_group("files")
    files.add_argument("-o", "--output", help="Directory for proof.json, public.json and outputs.json")
    files.add_argument("--proof", help="Proof file to verify")
    files.add_argument("--public", help="Public signals file to verify")
    files.add_argument("--path", help="Build directory (or parent of several) summarized in info mode")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Sanity verification
    if args.prover < 0:
        return _fail("invalid prover -p (must be >= 0)")
    if args.verifier < 0:
        return _fail("invalid verifier -v (must be >= 0)")

    try:
        if args.mode == "info":
            only_info(args)
            return 0

        config = make_config(args)
        print(f'''
    ##########################################
    - Running randomgen with options:
    - Mode (-m): {args.mode}
    - Circuit: {config.circuit_name} ({config.family})
    - Outputs: {config.num_outputs}
    - Force (-f): {args.force}
    - Build dir: {config.build_dir}
    ##########################################
    ''')

        hasher = PoseidonHasher() if config.cross_check_outputs else None
        orchestrator = RandomCircuitOrchestrator(config, hasher=hasher)
        if args.mode == "setup":
            only_setup(orchestrator, args.force)
        elif args.mode == "prove":
            only_prove(orchestrator, raw_inputs(args, config), args.output)
        elif args.mode == "verify":
            if not only_verify(orchestrator, args.proof, args.public):
                return 1
        elif args.mode == "local":
            only_local(orchestrator, raw_inputs(args, config))
            return 0
        elif args.mode == "bench":
            only_bench(orchestrator, args.prover, args.verifier, args.force)
        else:
            raise ValueError(f"Unknown mode: {args.mode}")

        timings = orchestrator.timings
        print(f"Timing stats: {timings.get_stats()}")
        timings.write_plain(config.build_dir)
        timings.write_stats(config.build_dir)
    except RandomGenError as e:
        return _fail(str(e))
    return 0


def make_config(args):
    overrides = {name: getattr(args, name) for name in CONFIG_ARGS}
    if args.extra_entropy is not None:
        overrides["extra_entropy"] = True
    if args.config:
        return load_config(args.config, **overrides)
    return CircuitConfig(**{k: v for k, v in overrides.items() if v is not None})


def raw_inputs(args, config):
    data = {"blockHash": args.block_hash, "userNonce": args.user_nonce}
    if config.extra_entropy:
        data["extraEntropy"] = args.extra_entropy
    if config.family == MODULUS_FAMILY:
        data["N"] = args.modulus
    elif args.modulus is not None:
        raise ValidationError("-N/--modulus only applies to modulus circuits")
    return data

######################
# DISPATCH FUNCTIONS #
######################

def only_setup(orchestrator, force):
    print(f"### Running setup: {orchestrator.config.circuit_name}")
    orchestrator.initialize(force_kinds(force))
    for kind, path in orchestrator.setup_driver.artifact_paths().items():
        print(f"{kind.value}: {path}")


def only_prove(orchestrator, inputs, output_dir):
    print(f"### Running prover: {orchestrator.config.circuit_name}")
    bundle = orchestrator.generate_proof(inputs)
    files = orchestrator.save_proof_data(bundle, output_dir)
    print(f"Outputs: {bundle.derived_outputs}")
    for path in files.values():
        print(f"Written: {path}")
    return bundle


def only_verify(orchestrator, proof_file, public_file):
    print(f"### Running verifier: {orchestrator.config.circuit_name}")
    bundle = orchestrator.load_proof_data(proof_file, public_file)
    valid = orchestrator.verify_proof(bundle.proof, bundle.public_signals)
    print("Proof is VALID" if valid else "Proof is INVALID")
    return valid


def only_local(orchestrator, inputs):
    print(f"### Computing outputs locally: {orchestrator.config.circuit_name}")
    if orchestrator.hasher is None:
        orchestrator.hasher = PoseidonHasher()
    orchestrator.hasher.initialize()
    outputs = orchestrator.compute_local_outputs(inputs)
    print(f"Outputs: {outputs}")
    return outputs


def only_bench(orchestrator, iters_prover, iters_verifier, force):
    config = orchestrator.config
    print(f"### Running bench: {config.circuit_name}, prover={iters_prover}, verifier={iters_verifier}")
    orchestrator.initialize(force_kinds(force))

    # Test correct verification
    bundle = orchestrator.generate_proof(_bench_input(config))
    orchestrator.save_proof_data(bundle)

    # generate_proof times the prover and its own verification
    for _ in range(iters_prover):
        bundle = orchestrator.generate_proof(_bench_input(config))

    for _ in range(iters_verifier):
        if not orchestrator.verify_proof(bundle.proof, bundle.public_signals):
            raise ValidationError("Benchmark proof failed verification")

    # info.json is only written when the power check runs during setup
    if not config.info_path.is_file():
        orchestrator.backend.r1cs_info(config.r1cs_path, config.info_path)
    print(f"Circuit info: {config.info_path}")


def only_info(args):
    root = Path(args.path) if args.path else Path(args.build_dir or "build")
    paths = find_build_dirs(root)
    if not paths:
        raise ValidationError(f"No build directories with logs under {root}")
    data = summarize(paths)
    for instance in data:
        print(format_instance(instance))
        print()
    print(f"Summary written to {write_summary(data)}")
    return data


def force_kinds(force):
    return (ArtifactKind.R1CS,) if force else ()


def _bench_input(config):
    return generate_input(config.family, config.extra_entropy)


def _fail(message):
    print(f"Error: {message}", file=sys.stderr)
    return 1

#############
# MAIN EXEC #
#############

if __name__ == "__main__":
    sys.exit(main())
