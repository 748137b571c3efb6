import pytest

from randomgen.config_manager import TEMPLATE_FILE, CircuitConfig

from fakes import FakeBackend, FakeHasher


@pytest.fixture
def config_factory(tmp_path):
    circuits = tmp_path / "circuits"
    circuits.mkdir()
    (circuits / TEMPLATE_FILE).write_text("pragma circom 2.0.0;\n", encoding="utf-8")

    def factory(**kwargs):
        params = {
            "build_dir": tmp_path / "build",
            "circuit_dir": circuits,
            "ptau_dir": tmp_path / "ptau",
            "ptau_entropy": "test-ptau-entropy",
            "setup_entropy": "test-setup-entropy",
        }
        params.update(kwargs)
        return CircuitConfig(**params)

    return factory


@pytest.fixture
def config(config_factory):
    return config_factory()


@pytest.fixture
def hasher():
    return FakeHasher().initialize()


@pytest.fixture
def backend():
    return FakeBackend()
