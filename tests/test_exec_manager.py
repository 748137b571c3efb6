import json
import subprocess
from pathlib import Path

import pytest

from randomgen import exec_manager
from randomgen.errors import ExternalToolError
from randomgen.exec_manager import SnarkjsBackend, parse_verify_output


class FakeRun:
    """Records commands and plays the part of the tool they name."""

    def __init__(self, returncode=0, stdout="", stderr="", effect=None):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.effect = effect
        self.commands = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        if self.effect is not None:
            self.effect(cmd)
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def fake_run(monkeypatch):
    def install(**kwargs):
        run = FakeRun(**kwargs)
        monkeypatch.setattr(subprocess, "run", run)
        return run

    return install


@pytest.mark.parametrize(
    "returncode, output, expected",
    [
        (0, "[INFO]  snarkJS: OK!\n", True),
        (0, "\x1b[32m[INFO]  snarkJS: OK!\x1b[39m", True),
        (0, "[ERROR] snarkJS: Invalid proof\n", False),
        (1, "[INFO]  snarkJS: OK!\n", False),
        (0, "", False),
    ],
)
def test_parse_verify_output(returncode, output, expected):
    assert parse_verify_output(returncode, output) is expected


def test_verify_returns_bool(fake_run):
    run = fake_run(stdout="[INFO]  snarkJS: OK!\n")
    backend = SnarkjsBackend(snarkjs="/usr/bin/snarkjs")
    assert backend.verify({"protocol": "groth16"}, ["1", "2"], {"pi_a": []}) is True
    assert run.commands[-1][:3] == ["/usr/bin/snarkjs", "groth16", "verify"]

    fake_run(returncode=1, stderr="[ERROR] snarkJS: Invalid proof")
    assert backend.verify({"protocol": "groth16"}, ["1", "2"], {"pi_a": []}) is False


def test_failed_command_raises_with_tool_output(fake_run):
    fake_run(returncode=1, stderr="\x1b[31m[ERROR] snarkJS: Error: power too small\x1b[0m")
    with pytest.raises(ExternalToolError, match="power too small") as excinfo:
        SnarkjsBackend().new_accumulator(8, "pot8_0000.ptau")
    assert excinfo.value.returncode == 1
    assert excinfo.value.tool == "snarkjs"
    assert "\x1b" not in excinfo.value.output


def test_missing_tool(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(ExternalToolError, match="not found"):
        SnarkjsBackend(snarkjs="no-such-snarkjs").prepare_phase2("a.ptau", "b.ptau")


def test_timeout(monkeypatch):
    def slow(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", slow)
    with pytest.raises(ExternalToolError, match="timed out"):
        SnarkjsBackend(timeout=5).new_proving_key("c.r1cs", "pot.ptau", "c_0000.zkey")


def test_contribution_commands(fake_run, caplog):
    run = fake_run()
    backend = SnarkjsBackend()
    with caplog.at_level("DEBUG", logger="randomgen.exec_manager"):
        backend.contribute_accumulator("in.ptau", "out.ptau", "secret-entropy", "alice")
        backend.contribute_proving_key("in.zkey", "out.zkey", "other-secret")

    assert run.commands[0] == [
        "snarkjs", "powersoftau", "contribute", "in.ptau", "out.ptau", "--name=alice", "-e=secret-entropy",
    ]
    assert run.commands[1][:3] == ["snarkjs", "zkey", "contribute"]
    assert "-e=other-secret" in run.commands[1]
    assert "secret-entropy" not in caplog.text
    assert "other-secret" not in caplog.text


def test_compile_circuit(fake_run, tmp_path):
    source = tmp_path / "random_5_35.circom"
    source.write_text("pragma circom 2.0.0;", encoding="utf-8")
    out = tmp_path / "out"

    def circom(cmd):
        (out / "random_5_35.r1cs").write_text("r1cs", encoding="utf-8")
        (out / "random_5_35_js").mkdir()
        (out / "random_5_35_js" / "random_5_35.wasm").write_text("wasm", encoding="utf-8")

    run = fake_run(effect=circom)
    r1cs, wasm = SnarkjsBackend().compile_circuit(source, out, include_paths=[tmp_path / "node_modules"])
    assert r1cs == out / "random_5_35.r1cs"
    assert wasm == out / "random_5_35_js" / "random_5_35.wasm"
    assert run.commands[0][:2] == ["circom", str(source)]
    assert run.commands[0][-2:] == ["-l", str(tmp_path / "node_modules")]


def test_compile_without_outputs_fails(fake_run, tmp_path):
    source = tmp_path / "c.circom"
    source.write_text("", encoding="utf-8")
    fake_run()
    with pytest.raises(ExternalToolError, match="did not produce"):
        SnarkjsBackend().compile_circuit(source, tmp_path / "out")
    with pytest.raises(ExternalToolError, match="not found"):
        SnarkjsBackend().compile_circuit(tmp_path / "missing.circom", tmp_path / "out")


def test_export_verification_key(fake_run, tmp_path):
    target = tmp_path / "verification_key.json"

    def export(cmd):
        Path(cmd[-1]).write_text(json.dumps({"protocol": "groth16", "nPublic": 7}), encoding="utf-8")

    fake_run(effect=export)
    vkey = SnarkjsBackend().export_verification_key(tmp_path / "c_final.zkey", target)
    assert vkey == {"protocol": "groth16", "nPublic": 7}


def test_prove(fake_run, tmp_path):
    seen = {}

    def fullprove(cmd):
        seen["input"] = json.loads(Path(cmd[3]).read_text(encoding="utf-8"))
        Path(cmd[6]).write_text(json.dumps({"pi_a": ["1"], "pi_b": [], "pi_c": []}), encoding="utf-8")
        Path(cmd[7]).write_text(json.dumps(["3", "1", "7"]), encoding="utf-8")

    fake_run(effect=fullprove)
    proof, public_signals = SnarkjsBackend().prove({"blockHash": "1", "userNonce": "7"}, "c.wasm", "c.zkey")
    assert seen["input"] == {"blockHash": "1", "userNonce": "7"}
    assert proof["pi_a"] == ["1"]
    assert public_signals == ["3", "1", "7"]


def test_prove_without_output_files(fake_run):
    fake_run()
    with pytest.raises(ExternalToolError, match="unreadable output"):
        SnarkjsBackend().prove({"blockHash": "1", "userNonce": "7"}, "c.wasm", "c.zkey")


def test_download_ceremony(monkeypatch, tmp_path):
    urls = []

    def download(url, out=None, bar=None):
        urls.append(url)
        Path(out).write_text("ptau", encoding="utf-8")
        return out

    monkeypatch.setattr(exec_manager.wget, "download", download)
    target = tmp_path / "ptau" / "powersOfTau28_hez_final_13.ptau"
    assert SnarkjsBackend().download_ceremony(13, target) == target
    assert target.is_file()
    assert urls[0].endswith("powersOfTau28_hez_final_13.ptau")

    SnarkjsBackend().download_ceremony(5, tmp_path / "small.ptau")
    assert urls[1].endswith("powersOfTau28_hez_final_08.ptau")


def test_download_failure(monkeypatch, tmp_path):
    def download(url, out=None, bar=None):
        raise OSError("connection refused")

    monkeypatch.setattr(exec_manager.wget, "download", download)
    with pytest.raises(ExternalToolError, match="connection refused"):
        SnarkjsBackend().download_ceremony(13, tmp_path / "pot.ptau")
