# ziptrials/verification/huge_archive.py
# Builder for the huge fixture archive used by the huge-archive trial.
#
# Entries are stored uncompressed and generated on the fly from seeded
# streams, so the archive grows past the 32-bit boundary without any source
# file on disk and with bounded memory.

import logging
import zipfile
from pathlib import Path
from typing import Optional

from ziptrials.engine.archive_engine import ZipArchive
from ziptrials.engine.policy import Zip64Policy
from ziptrials.telemetry.progress_bridge import ProgressEventBridge
from ziptrials.verification.entry_factory import RandomBinaryStream
from ziptrials.verification.harness_constants import LARGE_BUFFER_SIZE, SIZE_BOUNDARY

logger = logging.getLogger(__name__)

DEFAULT_HUGE_ENTRY_SIZE: int = 256 * 1024 * 1024


def build_huge_archive(
    path,
    min_size:   int = SIZE_BOUNDARY + 1,
    entry_size: int = DEFAULT_HUGE_ENTRY_SIZE,
    seed:       int = 0,
    bridge:     Optional[ProgressEventBridge] = None,
) -> Path:
    """
    Write an archive of at least `min_size` bytes to `path` with policy
    ALWAYS. Returns the path.
    """
    if entry_size <= 0:
        raise ValueError(f"entry_size must be > 0. Received: {entry_size}")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    count = min_size // entry_size + 1

    logger.info("Building huge archive %s: %d entries of %d bytes", path, count, entry_size)
    with ZipArchive(compression=zipfile.ZIP_STORED, buffer_size=LARGE_BUFFER_SIZE) as archive:
        archive.comment = "Huge archive fixture, zip64=Always"
        for i in range(count):
            archive.add_stream(
                f"huge/Data{i}.bin",
                lambda s=seed + i: RandomBinaryStream(s, entry_size),
                entry_size,
            )
        if bridge is not None:
            with bridge.observing(archive):
                archive.save(path, Zip64Policy.ALWAYS)
        else:
            archive.save(path, Zip64Policy.ALWAYS)
    logger.info("Huge archive %s written: %d bytes", path, path.stat().st_size)
    return path
