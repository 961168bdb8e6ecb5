# ziptrials/verification/large_archive_verifier.py
# LargeArchiveVerifier -- decodes every entry of an archive into a discarding
# sink.
#
# Each entry is fully decompressed and CRC-checked by the engine, but nothing
# is kept: memory use is bounded by the transfer buffer whatever the archive
# size. The first entry that fails aborts the whole verification.

import contextlib
import io
import logging
import zipfile
import zlib
from pathlib import Path
from typing import Optional

from ziptrials.engine.archive_engine import ZipArchive
from ziptrials.telemetry.progress_bridge import PassKind, ProgressEventBridge
from ziptrials.verification.harness_constants import LARGE_BUFFER_SIZE

logger = logging.getLogger(__name__)

# Errors zipfile raises for a damaged archive or entry.
_DECODE_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, OSError)


class DiscardingSink(io.RawIOBase):
    """Writable stream that drops everything written to it and counts the bytes."""

    def __init__(self):
        self.bytes_written = 0

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        n = len(data)
        self.bytes_written += n
        return n


class LargeArchiveVerifier:
    """
    Streams every entry of an archive, in archive order, into a DiscardingSink.

    When a bridge is given it is registered on the extract event stream for
    the duration of the pass, and opens and closes the pass on the channel.
    """

    def __init__(
        self,
        bridge:      Optional[ProgressEventBridge] = None,
        buffer_size: int = LARGE_BUFFER_SIZE,
        verb:        str = "Verifying",
    ):
        self._bridge     = bridge
        self.buffer_size = buffer_size
        self.verb        = verb

    def verify(self, archive_path) -> int:
        """
        Decode every entry. Returns the number of entries verified.
        Raises RuntimeError (EXTRACTION_FAILURE) on the first failure.
        """
        archive_path = Path(archive_path)
        logger.info("Checking file %s", archive_path)
        try:
            archive = ZipArchive.read(archive_path, buffer_size=self.buffer_size)
        except _DECODE_ERRORS as exc:
            raise RuntimeError(
                f"EXTRACTION_FAILURE: Cannot open {archive_path} for reading: {exc}"
            ) from exc

        sink = DiscardingSink()
        with archive:
            names = archive.entry_names
            observing = (
                self._bridge.observing(archive, self.verb)
                if self._bridge is not None
                else contextlib.nullcontext()
            )
            with observing:
                if self._bridge is not None:
                    self._bridge.begin_pass(PassKind.EXTRACT)
                for name in names:
                    logger.debug("  Entry: %s", name)
                    try:
                        archive.extract(name, sink)
                    except _DECODE_ERRORS as exc:
                        raise RuntimeError(
                            f"EXTRACTION_FAILURE: Entry '{name}' of {archive_path} "
                            f"failed to extract: {exc}"
                        ) from exc
                if self._bridge is not None:
                    self._bridge.end_pass(PassKind.EXTRACT)

        logger.info("Verified %d entries (%d bytes) in %s", len(names), sink.bytes_written, archive_path)
        return len(names)
