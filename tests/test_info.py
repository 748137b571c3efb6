import json

import pytest

from randomgen.errors import FileIOError
from randomgen.info import (
    find_build_dirs,
    format_instance,
    get_instance_info,
    get_instance_times,
    summarize,
    write_summary,
)


def _build_dir(root, name, info=None, samples=None):
    path = root / name
    path.mkdir()
    if info is not None:
        (path / "info.json").write_text(json.dumps(info), encoding="utf-8")
    if samples is not None:
        (path / "log_plain.json").write_text(json.dumps(samples), encoding="utf-8")
    return path


def test_instance_times(tmp_path):
    path = _build_dir(tmp_path, "random_5_35", samples={"prover": [1.0, 3.0], "setup": [10.0]})
    times = get_instance_times(path)
    assert times["prover"]["samples"] == 2
    assert times["prover"]["avg"] == pytest.approx(2.0)
    assert times["prover"]["std"] == pytest.approx(1.0)
    assert times["verifier"] == {"samples": 0, "avg": 0.0, "std": 0.0}


def test_instance_info_optional(tmp_path):
    assert get_instance_info(tmp_path) == {}


def test_find_build_dirs(tmp_path):
    _build_dir(tmp_path, "random_6_50", info={"setup_size": 14})
    _build_dir(tmp_path, "random_5_35", samples={"prover": [1.0]})
    _build_dir(tmp_path, "empty")

    found = find_build_dirs(tmp_path)
    assert [p.name for p in found] == ["random_5_35", "random_6_50"]
    assert find_build_dirs(found[0]) == [found[0]]
    assert find_build_dirs(tmp_path / "nope") == []


def test_summarize_and_write(tmp_path):
    path = _build_dir(
        tmp_path, "random_5_35",
        info={"setup_size": 13, "constraints": 5000},
        samples={"setup": [2.0], "prover": [1.0, 1.0], "verifier": [0.5]},
    )
    data = summarize([path])
    assert data[0]["instance"] == "random_5_35"
    assert data[0]["setup_size"] == 13
    assert data[0]["constraints"] == 5000
    assert data[0]["prover"]["samples"] == 2

    out = write_summary(data, tmp_path / "stats.json")
    assert json.loads(out.read_text(encoding="utf-8")) == data

    text = format_instance(data[0])
    assert "Instance: random_5_35" in text
    assert "Prover samples: 2" in text
    assert "Verifier average (s): 0.5" in text


def test_corrupt_log(tmp_path):
    path = tmp_path / "broken"
    path.mkdir()
    (path / "log_plain.json").write_text("{", encoding="utf-8")
    with pytest.raises(FileIOError):
        get_instance_times(path)
