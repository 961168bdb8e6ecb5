# ziptrials/verification/checksum_registry.py
# ChecksumRegistry -- content digests per entry name, recorded at creation
# and compared after a round trip.
#
# Sources are streamed in fixed-size blocks; memory use does not depend on
# entry size. SHA-256 is applied identically before and after the round trip.

import hashlib
import logging
from pathlib import Path
from typing import BinaryIO, Dict, List, Tuple, Union

from ziptrials.verification.data_models.checksum_record import (
    ChecksumMismatch,
    ChecksumRecord,
    VerificationReport,
)

logger = logging.getLogger(__name__)

_BLOCK_SIZE: int = 64 * 1024

Source = Union[str, Path, BinaryIO]


def _digest_stream(stream: BinaryIO) -> Tuple[str, int]:
    h = hashlib.sha256()
    size = 0
    while True:
        block = stream.read(_BLOCK_SIZE)
        if not block:
            break
        h.update(block)
        size += len(block)
    return h.hexdigest(), size


def compute_checksum(source: Source) -> Tuple[str, int]:
    """
    Return (hex SHA-256, byte count) of a path or a binary file object.
    A file object is read from its current position to EOF and not closed.
    """
    if isinstance(source, (str, Path)):
        with open(source, "rb") as f:
            return _digest_stream(f)
    return _digest_stream(source)


class ChecksumRegistry:
    """
    Checksums of one trial's entries, keyed by entry relative name.

    Recording the same name twice is a trial-construction bug and raises.
    Renames are tracked so a renamed entry is checked against the checksum
    of its original content.
    """

    def __init__(self):
        self._records:    Dict[str, ChecksumRecord] = {}
        self._renamed:    Dict[str, str] = {}
        self._mismatches: List[ChecksumMismatch] = []
        self._verified = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, name: str) -> bool:
        return self._resolve(name) in self._records

    @property
    def names(self) -> List[str]:
        return list(self._records)

    def get(self, name: str) -> ChecksumRecord:
        return self._records[self._resolve(name)]

    def record(self, name: str, source: Source) -> ChecksumRecord:
        """
        Compute and store the checksum of `source` under `name`.
        Raises RuntimeError (NAME_COLLISION) if `name` is already recorded.
        """
        if name in self._records:
            raise RuntimeError(
                f"NAME_COLLISION: Entry name '{name}' recorded twice in one trial."
            )
        digest, size = compute_checksum(source)
        rec = ChecksumRecord(name=name, digest=digest, size=size)
        self._records[name] = rec
        return rec

    def track_rename(self, original: str, renamed: str) -> None:
        """Resolve later lookups of `renamed` to the checksum recorded for `original`."""
        if original not in self._records:
            raise KeyError(f"No checksum recorded for '{original}'.")
        self._renamed[renamed] = original

    def original_name(self, name: str) -> str:
        return self._resolve(name)

    def _resolve(self, name: str) -> str:
        return self._renamed.get(name, name)

    def verify(self, name: str, source: Source) -> bool:
        """
        Recompute the checksum of `source` and compare it with the one recorded
        for `name`. A mismatch or a missing record is kept in `mismatches`
        and False is returned.
        """
        self._verified += 1
        actual, _ = compute_checksum(source)
        rec = self._records.get(self._resolve(name))
        if rec is None:
            self._mismatches.append(ChecksumMismatch(name=name, expected="(missing)", actual=actual))
            logger.debug("No checksum recorded for %s", name)
            return False
        if rec.digest != actual:
            self._mismatches.append(ChecksumMismatch(name=name, expected=rec.digest, actual=actual))
            logger.debug("Checksum mismatch for %s: %s != %s", name, rec.digest, actual)
            return False
        return True

    @property
    def mismatches(self) -> Tuple[ChecksumMismatch, ...]:
        return tuple(self._mismatches)

    def report(self) -> VerificationReport:
        return VerificationReport(
            passed=not self._mismatches,
            verified=self._verified,
            mismatches=tuple(self._mismatches),
        )
