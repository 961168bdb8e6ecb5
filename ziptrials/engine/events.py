# ziptrials/engine/events.py
# Progress events emitted synchronously by ZipArchive during save and extract.
#
# Events are delivered on the calling thread, inline with the pass that
# produced them. Observers must not raise; an observer exception aborts the
# pass like any other error in the caller's code.

from dataclasses import dataclass
from enum import Enum


class ProgressEventKind(Enum):
    SAVE_STARTED         = "save-started"
    BEFORE_WRITE_ENTRY   = "before-write-entry"
    ENTRY_BYTES_READ     = "entry-bytes-read"
    AFTER_WRITE_ENTRY    = "after-write-entry"
    SAVE_COMPLETED       = "save-completed"
    BEFORE_EXTRACT_ENTRY = "before-extract-entry"
    ENTRY_BYTES_WRITTEN  = "entry-bytes-written"
    AFTER_EXTRACT_ENTRY  = "after-extract-entry"

    @property
    def is_save(self) -> bool:
        return self in _SAVE_KINDS


_SAVE_KINDS = frozenset({
    ProgressEventKind.SAVE_STARTED,
    ProgressEventKind.BEFORE_WRITE_ENTRY,
    ProgressEventKind.ENTRY_BYTES_READ,
    ProgressEventKind.AFTER_WRITE_ENTRY,
    ProgressEventKind.SAVE_COMPLETED,
})


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification.

    Fields:
      kind              -- ProgressEventKind.
      archive_name      -- File name of the archive being saved or read.
      entry_name        -- Current entry name. Empty for archive-level events.
      bytes_transferred -- Bytes of the current entry moved so far.
      total_bytes       -- Uncompressed size of the current entry.
      entries_total     -- Number of entries in the pass.
    """
    kind:              ProgressEventKind
    archive_name:      str = ""
    entry_name:        str = ""
    bytes_transferred: int = 0
    total_bytes:       int = 0
    entries_total:     int = 0


class ProgressObserver:
    """Receives ProgressEvents from a ZipArchive it is registered with."""

    def on_progress(self, event: ProgressEvent) -> None:
        raise NotImplementedError
