import json
import subprocess

import pytest

from randomgen.errors import ArtifactMissingError, ExternalToolError
from randomgen.r1cs_parser import parse_inspect_output, r1cs_parse, required_power, strip_ansi

SNARKJS_INFO = (
    "\x1b[32m[INFO]  \x1b[39msnarkJS: Curve: bn-128\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Wires: 5210\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Constraints: 5000\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Private Inputs: 0\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Public Inputs: 2\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Labels: 9000\n"
    "\x1b[32m[INFO]  \x1b[39msnarkJS: # of Outputs: 5\n"
)


def test_strip_ansi():
    assert strip_ansi("\x1b[32mOK!\x1b[0m") == "OK!"


def test_parse_inspect_output():
    info = parse_inspect_output(SNARKJS_INFO)
    assert info["curve"] == "bn-128"
    assert info["wires"] == 5210
    assert info["constraints"] == 5000
    assert info["private_inputs"] == 0
    assert info["public_inputs"] == 2
    assert info["outputs"] == 5
    assert info["setup_size"] == 13


def test_lines_without_values_are_ignored():
    assert parse_inspect_output("compiling...\n[INFO]  snarkJS: done\n") == {}


@pytest.mark.parametrize(
    "info, expected",
    [
        ({"constraints": 0}, 1),
        ({"constraints": 1}, 1),
        ({"constraints": 4089, "public_inputs": 2, "outputs": 5}, 13),
        ({"constraints": 8185, "public_inputs": 2, "outputs": 5}, 14),
    ],
)
def test_required_power(info, expected):
    assert required_power(info) == expected


def test_r1cs_parse_writes_info(monkeypatch, tmp_path):
    r1cs = tmp_path / "c.r1cs"
    r1cs.write_text("r1cs", encoding="utf-8")
    monkeypatch.setattr(
        subprocess, "run", lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, SNARKJS_INFO, "")
    )

    info = r1cs_parse(r1cs, tmp_path / "info.json")
    assert info["setup_size"] == 13
    assert json.loads((tmp_path / "info.json").read_text(encoding="utf-8")) == info


def test_r1cs_parse_missing_file(tmp_path):
    with pytest.raises(ArtifactMissingError):
        r1cs_parse(tmp_path / "missing.r1cs")


def test_inspect_failure(monkeypatch, tmp_path):
    r1cs = tmp_path / "c.r1cs"
    r1cs.write_text("r1cs", encoding="utf-8")

    def fail(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, output="", stderr="Invalid r1cs")

    monkeypatch.setattr(subprocess, "run", fail)
    with pytest.raises(ExternalToolError, match="Invalid r1cs"):
        r1cs_parse(r1cs)
