import json
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path

import numpy

from .errors import FileIOError, ValidationError

LABELS = ("setup", "prover", "verifier")

PLAIN_LOG_FILE = "log_plain.json"
STATS_LOG_FILE = "log_stats.json"


class TimingLog:
    """
    Wall-clock samples per workflow stage, in seconds.

    With ``max_samples`` set, each stage keeps only its most recent samples.
    """

    def __init__(self, max_samples=None):
        if max_samples is not None and max_samples < 1:
            raise ValidationError(f"max_samples must be positive, got {max_samples}")
        self.max_samples = max_samples
        self.measurements = {label: deque(maxlen=max_samples) for label in LABELS}

    def time_append(self, label, elapsed):
        if label not in LABELS:
            raise ValidationError(f"Incorrect timing label: {label}")
        self.measurements[label].append(float(elapsed))

    @contextmanager
    def measure(self, label):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.time_append(label, time.perf_counter() - start)

    def reset(self, label=None):
        """Drop the samples of one label, or of every label."""
        if label is None:
            for samples in self.measurements.values():
                samples.clear()
            return
        if label not in LABELS:
            raise ValidationError(f"Incorrect timing label: {label}")
        self.measurements[label].clear()

    def get_stats(self, label="all"):
        """(mean, std) for one label, or a dict of them for ``all``."""
        if label == "all":
            return {key: _stats(self.measurements[key]) for key in LABELS}
        if label not in LABELS:
            raise ValidationError(f"Incorrect timing label: {label}")
        return _stats(self.measurements[label])

    def write_plain(self, path):
        """Append this run's samples to ``log_plain.json`` in ``path``."""
        file_path = Path(path) / PLAIN_LOG_FILE

        data = {key: [] for key in LABELS}
        if file_path.exists():
            data.update(_read_json(file_path))

        for key in LABELS:
            data.setdefault(key, []).extend(self.measurements[key])

        _write_json(file_path, data)
        return file_path

    def write_stats(self, path):
        file_path = Path(path) / STATS_LOG_FILE
        _write_json(file_path, self.get_stats())
        return file_path


def _stats(samples):
    if not samples:
        return (0.0, 0.0)
    samples = list(samples)
    return (float(numpy.average(samples)), float(numpy.std(samples)))


def _read_json(file_path):
    try:
        with file_path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as e:
        raise FileIOError(f"Cannot read {file_path}: {e}") from e


def _write_json(file_path, data):
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with file_path.open("w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
    except OSError as e:
        raise FileIOError(f"Cannot write {file_path}: {e}") from e
