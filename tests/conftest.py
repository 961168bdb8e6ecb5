from pathlib import Path
from typing import List

import numpy as np
import pytest

from ziptrials.engine import ZipArchive, Zip64Policy
from ziptrials.verification.entry_factory import EntryFactory

# Small sizes keep every archive in the test suite well below the 32-bit limits.
_TEST_SIZE_RANGE = (200, 3000)


class RecordingChannel:
    """Stands in for TelemetryChannel. Keeps every line sent."""

    def __init__(self):
        self.lines: List[str] = []
        self.closed = False

    def send(self, line: str) -> bool:
        self.lines.append(line)
        return True

    def close(self) -> None:
        self.closed = True
        self.lines.append("stop")


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def factory(rng) -> EntryFactory:
    """EntryFactory with a fixed seed and small entry sizes."""
    return EntryFactory(rng, _TEST_SIZE_RANGE)


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def source_files(tmp_path, factory) -> List[Path]:
    """Eight generated entry files under tmp_path/src."""
    return factory.create_files(tmp_path / "src", 8)


@pytest.fixture
def make_archive(tmp_path):
    """
    Returns a builder: make_archive(files, name, policy) -> saved archive path.
    """
    def _make(files, name: str = "fixture.zip", policy: Zip64Policy = Zip64Policy.AS_NECESSARY) -> Path:
        target = tmp_path / name
        with ZipArchive() as archive:
            for path in files:
                archive.add_file(path)
            archive.save(target, policy)
        return target
    return _make
