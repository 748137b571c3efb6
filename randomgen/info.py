"""Aggregate circuit info and timing logs of one or more build directories."""

import json
from pathlib import Path

import numpy

from .config_manager import INFO_FILE
from .errors import FileIOError
from .timings import LABELS, PLAIN_LOG_FILE

STATS_FILE = "stats.json"


def get_instance_info(path):
    info_path = Path(path) / INFO_FILE
    if not info_path.is_file():
        return {}
    return _load(info_path)


def get_instance_times(path):
    """{label: {samples, avg, std}} from the appended timing log."""
    samples_path = Path(path) / PLAIN_LOG_FILE
    data = _load(samples_path) if samples_path.is_file() else {}

    results = {}
    for label in LABELS:
        samples = data.get(label, [])
        if not samples:
            results[label] = {"samples": 0, "avg": 0.0, "std": 0.0}
        else:
            results[label] = {
                "samples": len(samples),
                "avg": float(numpy.average(samples)),
                "std": float(numpy.std(samples)),
            }
    return results


def find_build_dirs(root):
    """``root`` itself when it holds logs, else its subdirectories that do."""
    root = Path(root)
    if _has_logs(root):
        return [root]
    if not root.is_dir():
        return []
    return sorted((p for p in root.iterdir() if p.is_dir() and _has_logs(p)), key=lambda p: p.as_posix())


def summarize(paths):
    data = []
    for path in paths:
        path = Path(path)
        info = get_instance_info(path)
        instance = {
            "instance": path.name or str(path),
            "setup_size": info.get("setup_size"),
            "constraints": info.get("constraints"),
        }
        instance.update(get_instance_times(path))
        data.append(instance)
    return data


def write_summary(data, file_path=STATS_FILE):
    file_path = Path(file_path)
    with file_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return file_path


def format_instance(instance):
    lines = [
        f"Instance: {instance['instance']}",
        f"Setup size: {instance['setup_size']}",
        f"Number of constraints: {instance['constraints']}",
    ]
    for label in LABELS:
        stats = instance[label]
        lines.append(f"{label.capitalize()} samples: {stats['samples']}")
        lines.append(f"{label.capitalize()} average (s): {stats['avg']}")
        lines.append(f"{label.capitalize()} std dev (s): {stats['std']}")
    return "\n".join(lines)


def _has_logs(path):
    return (path / INFO_FILE).is_file() or (path / PLAIN_LOG_FILE).is_file()


def _load(path):
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise FileIOError(f"Cannot read {path}: {e}") from e
