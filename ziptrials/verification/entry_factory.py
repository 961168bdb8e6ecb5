# ziptrials/verification/entry_factory.py
# EntryFactory -- pseudo-random entry content for trials.
#
# All randomness comes from one numpy Generator seeded by the harness, so a
# run is reproducible from its seed. Content is written in blocks; no
# generated file is held in memory in full.

import io
from pathlib import Path
from typing import List, Tuple

import numpy as np

_BLOCK_SIZE: int = 64 * 1024

# Vocabulary for text entries. Lines of words, LF-terminated.
_WORDS = (
    "archive", "entry", "central", "directory", "header", "offset", "deflate",
    "stored", "extension", "record", "locator", "signature", "checksum",
    "stream", "buffer", "volume", "comment", "update", "convert", "verify",
    "the", "a", "of", "and", "to", "in", "is", "for", "with", "on",
)
_WORDS_PER_LINE = (4, 14)


def random_binary(rng: np.random.Generator, size: int) -> bytes:
    return rng.integers(0, 256, size=size, dtype=np.uint8).tobytes()


def random_text(rng: np.random.Generator, size: int) -> bytes:
    """ASCII lines of random words, exactly `size` bytes long."""
    out = bytearray()
    while len(out) < size:
        n = int(rng.integers(_WORDS_PER_LINE[0], _WORDS_PER_LINE[1] + 1))
        picks = rng.integers(0, len(_WORDS), size=n)
        out += (" ".join(_WORDS[i] for i in picks) + "\n").encode("ascii")
    return bytes(out[:size])


def _write_blocks(path: Path, size: int, produce) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        remaining = size
        while remaining > 0:
            n = min(_BLOCK_SIZE, remaining)
            f.write(produce(n))
            remaining -= n
    return path


class RandomBinaryStream(io.RawIOBase):
    """
    Read-only stream of exactly `size` pseudo-random bytes.
    Lets the engine add a large entry without any file on disk.
    """

    def __init__(self, seed: int, size: int):
        self._rng = np.random.default_rng(seed)
        self._remaining = size

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        n = min(len(buffer), self._remaining)
        if n <= 0:
            return 0
        buffer[:n] = random_binary(self._rng, n)
        self._remaining -= n
        return n


class EntryFactory:
    """
    Creates the entry files of one trial.

    File names follow "Data{i}.bin" for binary and "Data{i}.txt" for text
    content; the kind of each file is a fair coin toss.
    """

    def __init__(self, rng: np.random.Generator, size_range: Tuple[int, int]):
        self._rng = rng
        self._size_range = size_range

    def entry_count(self, count_range: Tuple[int, int]) -> int:
        lo, hi = count_range
        return int(self._rng.integers(lo, hi + 1))

    def entry_size(self) -> int:
        lo, hi = self._size_range
        return self.entry_size_between(lo, hi)

    def entry_size_between(self, lo: int, hi: int) -> int:
        return int(self._rng.integers(lo, hi + 1))

    def write_binary(self, path: Path, size: int) -> Path:
        return _write_blocks(Path(path), size, lambda n: random_binary(self._rng, n))

    def write_text(self, path: Path, size: int) -> Path:
        return _write_blocks(Path(path), size, lambda n: random_text(self._rng, n))

    def create_files(self, directory: Path, count: int) -> List[Path]:
        """Write `count` entry files into `directory`. Returns their paths in order."""
        directory = Path(directory)
        files = []
        for i in range(count):
            size = self.entry_size()
            if self._rng.integers(0, 2) == 1:
                files.append(self.write_binary(directory / f"Data{i}.bin", size))
            else:
                files.append(self.write_text(directory / f"Data{i}.txt", size))
        return files

    def choice(self, options):
        return options[int(self._rng.integers(0, len(options)))]

    def child_seed(self) -> int:
        return int(self._rng.integers(0, 2**31 - 1))
