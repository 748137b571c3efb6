import json

import pytest

from randomgen import cli
from randomgen.errors import ValidationError
from randomgen.gen_input import MODULUS_FAMILY


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["-m", "dance"])


def test_log_level_is_checked():
    parser = cli.build_parser()
    assert parser.parse_args(["-m", "info", "--log-level", "debug"]).log_level == "DEBUG"
    with pytest.raises(SystemExit):
        parser.parse_args(["-m", "info", "--log-level", "foo"])


def test_cross_check_config_gets_a_hasher(tmp_path, monkeypatch):
    created = []

    class Recorder(cli.RandomCircuitOrchestrator):
        def __init__(self, config, hasher=None):
            created.append(hasher)
            raise ValidationError("stop")

    monkeypatch.setattr(cli, "RandomCircuitOrchestrator", Recorder)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"cross_check_outputs": True}), encoding="utf-8")
    assert cli.main(["-m", "setup", "-c", str(path), "--build-dir", str(tmp_path / "build")]) == 1
    assert isinstance(created[0], cli.PoseidonHasher)


def test_make_config_from_flags(tmp_path):
    args = cli.build_parser().parse_args([
        "-m", "prove", "-n", "6", "--pool-size", "49", "--build-dir", str(tmp_path), "--extra-entropy", "0x01",
    ])
    config = cli.make_config(args)
    assert config.circuit_name == "random_6_49"
    assert config.build_dir == tmp_path
    assert config.extra_entropy is True


def test_make_config_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"family": MODULUS_FAMILY, "num_outputs": 3}), encoding="utf-8")
    args = cli.build_parser().parse_args(["-m", "setup", "-c", str(path), "--power", "10"])
    config = cli.make_config(args)
    assert config.circuit_name == "random_3"
    assert config.power == 10


def test_raw_inputs():
    parser = cli.build_parser()
    args = parser.parse_args(["-m", "prove", "--family", "modulus", "--block-hash", "0x12", "--user-nonce", "3", "-N", "9"])
    config = cli.make_config(args)
    assert cli.raw_inputs(args, config) == {"blockHash": "0x12", "userNonce": "3", "N": "9"}

    args = parser.parse_args(["-m", "prove", "--block-hash", "0x12", "--user-nonce", "3", "-N", "9"])
    with pytest.raises(ValidationError):
        cli.raw_inputs(args, cli.make_config(args))


def test_invalid_inputs_exit_non_zero(tmp_path, capsys):
    code = cli.main(["-m", "prove", "--build-dir", str(tmp_path / "build"), "--user-nonce", "7"])
    assert code == 1
    assert "inputs.blockHash is required" in capsys.readouterr().err
    assert not (tmp_path / "build").exists()


def test_negative_iterations(capsys):
    assert cli.main(["-m", "bench", "-p", "-1"]) == 1
    assert "invalid prover" in capsys.readouterr().err


def test_info_mode(tmp_path, monkeypatch, capsys):
    build = tmp_path / "build" / "random_5_35"
    build.mkdir(parents=True)
    (build / "info.json").write_text(json.dumps({"setup_size": 13, "constraints": 5000}), encoding="utf-8")
    (build / "log_plain.json").write_text(json.dumps({"prover": [1.0, 2.0]}), encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    assert cli.main(["-m", "info", "--path", str(tmp_path / "build")]) == 0
    out = capsys.readouterr().out
    assert "Instance: random_5_35" in out
    summary = json.loads((tmp_path / "stats.json").read_text(encoding="utf-8"))
    assert summary[0]["prover"]["samples"] == 2


def test_info_mode_without_logs(tmp_path, capsys):
    assert cli.main(["-m", "info", "--path", str(tmp_path)]) == 1
    assert "No build directories" in capsys.readouterr().err
