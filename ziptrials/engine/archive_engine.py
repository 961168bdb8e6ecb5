# ziptrials/engine/archive_engine.py
# ZipArchive -- the archive engine the trial harness drives.
#
# A thin, stateful adapter over the standard-library zipfile module. It adds
# what zipfile does not offer directly: a three-valued ZIP64 policy, a
# synchronous progress event stream, entry rename and pattern removal on an
# archive read from disk, in-place re-save, and a report of whether the last
# save actually wrote ZIP64 records.
#
# All reads and writes stream through a fixed-size transfer buffer. No entry
# is ever held in memory in full.

import contextlib
import fnmatch
import logging
import os
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

from ziptrials.engine.events import ProgressEvent, ProgressEventKind, ProgressObserver
from ziptrials.engine.policy import Zip64Policy
from ziptrials.engine.zip64_inspector import Zip64Inspector

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE: int = 64 * 1024


def archive_name(path, directory: str = "") -> str:
    """
    Archive name for a file added under `directory`.

    The file's own directories are flattened away: only its base name is kept,
    prefixed by `directory` when one is given. Used both when entries are
    created and when their checksums are looked up again.
    """
    base = Path(path).name
    directory = directory.replace("\\", "/").strip("/")
    return f"{directory}/{base}" if directory else base


@dataclass(frozen=True)
class EntryInfo:
    """Public view of one entry."""
    name:          str
    file_size:     int
    compress_size: int
    crc:           int


@dataclass
class _PendingEntry:
    """
    One entry as it will be written by the next save.

    Exactly one source is set: source_path (a file on disk), opener (a
    callable returning a fresh binary stream) or archived_name (an entry of
    the archive this object was read from).
    """
    name:          str
    file_size:     int
    date_time:     Tuple[int, int, int, int, int, int]
    source_path:   Optional[Path] = None
    opener:        Optional[Callable[[], BinaryIO]] = None
    archived_name: Optional[str] = None
    compress_type: Optional[int] = None


class ZipArchive:
    """
    An archive being built, or read from disk and possibly modified.

    Usage:
        with ZipArchive() as zip1:
            zip1.add_file(path)
            zip1.save(target, Zip64Policy.ALWAYS)
            zip1.used_zip64        # True

        with ZipArchive.read(target) as zip2:
            for name in zip2.entry_names:
                zip2.extract(name, sink)
    """

    def __init__(
        self,
        compression: int = zipfile.ZIP_DEFLATED,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.compression  = compression
        self.buffer_size  = buffer_size
        self.comment      = ""
        self._path:       Optional[Path] = None
        self._reader:     Optional[zipfile.ZipFile] = None
        self._entries:    List[_PendingEntry] = []
        self._observers:  List[ProgressObserver] = []
        self._used_zip64: Optional[bool] = None

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    @classmethod
    def read(cls, path, buffer_size: int = DEFAULT_BUFFER_SIZE) -> "ZipArchive":
        """Open an existing archive. Raises zipfile.BadZipFile on a corrupt file."""
        archive = cls(buffer_size=buffer_size)
        archive._load(Path(path))
        return archive

    def _load(self, path: Path) -> None:
        self._reader = zipfile.ZipFile(path, "r")
        self._path   = path
        self.comment = self._reader.comment.decode("utf-8", errors="replace")
        self._entries = [
            _PendingEntry(
                name=zi.filename,
                file_size=zi.file_size,
                date_time=zi.date_time,
                archived_name=zi.filename,
                compress_type=zi.compress_type,
            )
            for zi in self._reader.infolist()
            if not zi.is_dir()
        ]

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def __enter__(self) -> "ZipArchive":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, observer: ProgressObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: ProgressObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    @contextlib.contextmanager
    def observing(self, observer: ProgressObserver) -> Iterator[ProgressObserver]:
        """Register observer for the duration of the with-block."""
        self.add_observer(observer)
        try:
            yield observer
        finally:
            self.remove_observer(observer)

    def _emit(self, kind: ProgressEventKind, **fields) -> None:
        if not self._observers:
            return
        event = ProgressEvent(
            kind=kind,
            archive_name=self._path.name if self._path is not None else "",
            **fields,
        )
        for observer in list(self._observers):
            observer.on_progress(event)

    # ------------------------------------------------------------------
    # Entry queries
    # ------------------------------------------------------------------

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def entry_names(self) -> List[str]:
        return [e.name for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EntryInfo]:
        for entry in self._entries:
            yield self._info(entry)

    def __contains__(self, name: str) -> bool:
        return any(e.name == name for e in self._entries)

    def _find(self, name: str) -> _PendingEntry:
        for entry in self._entries:
            if entry.name == name:
                return entry
        raise KeyError(f"No entry named '{name}' in archive.")

    def _info(self, entry: _PendingEntry) -> EntryInfo:
        if entry.archived_name is not None and self._reader is not None:
            zi = self._reader.getinfo(entry.archived_name)
            return EntryInfo(entry.name, zi.file_size, zi.compress_size, zi.CRC)
        return EntryInfo(entry.name, entry.file_size, 0, 0)

    def info(self, name: str) -> EntryInfo:
        return self._info(self._find(name))

    @property
    def used_zip64(self) -> Optional[bool]:
        """
        Whether the most recent save wrote any ZIP64 record.
        None until this object has saved at least once.
        """
        return self._used_zip64

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_file(self, path, directory: str = "") -> str:
        """Add a file from disk. Returns its archive name. Duplicate names raise ValueError."""
        path = Path(path)
        name = archive_name(path, directory)
        if name in self:
            raise ValueError(f"Entry '{name}' already exists in archive.")
        self._entries.append(self._from_disk(path, name))
        return name

    def add_stream(
        self,
        name:   str,
        opener: Callable[[], BinaryIO],
        size:   int,
    ) -> str:
        """
        Add an entry whose content is produced at save time by `opener()`.
        `size` must equal the number of bytes the stream yields.
        """
        if name in self:
            raise ValueError(f"Entry '{name}' already exists in archive.")
        self._entries.append(_PendingEntry(
            name=name,
            file_size=size,
            date_time=time.localtime()[:6],
            opener=opener,
        ))
        return name

    def update_directory(self, path, directory: str = "") -> List[str]:
        """
        Add every file under `path`, keeping its relative layout below
        `directory`. Entries that already exist under the same name are
        replaced. Returns the names added or replaced.
        """
        root = Path(path)
        prefix = directory.replace("\\", "/").strip("/")
        names = []
        for file in sorted(p for p in root.rglob("*") if p.is_file()):
            rel  = file.relative_to(root).as_posix()
            name = f"{prefix}/{rel}" if prefix else rel
            replacement = self._from_disk(file, name)
            for i, entry in enumerate(self._entries):
                if entry.name == name:
                    self._entries[i] = replacement
                    break
            else:
                self._entries.append(replacement)
            names.append(name)
        return names

    @staticmethod
    def _from_disk(path: Path, name: str) -> _PendingEntry:
        st = path.stat()
        return _PendingEntry(
            name=name,
            file_size=st.st_size,
            date_time=zipfile.ZipInfo.from_file(path, strict_timestamps=False).date_time,
            source_path=path,
        )

    def rename(self, old_name: str, new_name: str) -> None:
        if new_name in self:
            raise ValueError(f"Cannot rename '{old_name}': '{new_name}' already exists.")
        self._find(old_name).name = new_name

    def remove(self, name: str) -> None:
        self._entries.remove(self._find(name))

    def remove_matching(self, pattern: str) -> List[str]:
        """
        Remove every entry whose name matches a shell-style pattern
        ("*.txt"). Matching is case-sensitive. Returns the removed names.
        """
        removed = [e.name for e in self._entries if fnmatch.fnmatchcase(e.name, pattern)]
        self._entries = [e for e in self._entries if e.name not in removed]
        return removed

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def _open_source(self, entry: _PendingEntry) -> BinaryIO:
        if entry.source_path is not None:
            return open(entry.source_path, "rb")
        if entry.opener is not None:
            return entry.opener()
        if self._reader is None:
            raise RuntimeError(f"ENGINE_ERROR: Archive for entry '{entry.name}' is closed.")
        return self._reader.open(entry.archived_name, "r")

    def _pump(
        self,
        src:   BinaryIO,
        dst:   BinaryIO,
        entry: _PendingEntry,
        kind:  ProgressEventKind,
    ) -> int:
        transferred = 0
        while True:
            chunk = src.read(self.buffer_size)
            if not chunk:
                break
            dst.write(chunk)
            transferred += len(chunk)
            self._emit(
                kind,
                entry_name=entry.name,
                bytes_transferred=transferred,
                total_bytes=entry.file_size,
                entries_total=len(self._entries),
            )
        return transferred

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, path=None, policy: Zip64Policy = Zip64Policy.AS_NECESSARY) -> Path:
        """
        Write all entries to `path` (default: the file this archive was read
        from) under the given ZIP64 policy.

        The archive is written to a sibling temporary file and moved into place
        once complete, so saving over the source archive is allowed. After
        the save this object reads from the new file.

        Raises zipfile.LargeZipFile when policy is NEVER and the content needs
        ZIP64.
        """
        if path is None and self._path is None:
            raise ValueError("save() needs a path for an archive that was never read or saved.")
        target = Path(path) if path is not None else self._path
        tmp    = target.with_name(target.name + ".tmp")
        total  = len(self._entries)

        logger.debug("Saving %s (%d entries, zip64=%s)", target, total, policy.value)
        self._emit(ProgressEventKind.SAVE_STARTED, entries_total=total)
        try:
            with zipfile.ZipFile(
                tmp,
                "w",
                compression=self.compression,
                allowZip64=policy.allows_zip64,
            ) as out:
                out.comment = self.comment.encode("utf-8")
                for entry in self._entries:
                    self._write_entry(out, entry, policy, total)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise

        self.close()
        os.replace(tmp, target)
        self._load(target)
        self._used_zip64 = Zip64Inspector(target).uses_zip64()
        self._emit(ProgressEventKind.SAVE_COMPLETED, entries_total=total)
        return target

    def _write_entry(
        self,
        out:    zipfile.ZipFile,
        entry:  _PendingEntry,
        policy: Zip64Policy,
        total:  int,
    ) -> None:
        self._emit(
            ProgressEventKind.BEFORE_WRITE_ENTRY,
            entry_name=entry.name,
            total_bytes=entry.file_size,
            entries_total=total,
        )
        zinfo = zipfile.ZipInfo(entry.name, date_time=entry.date_time)
        # Entries read from an archive keep their compression method.
        zinfo.compress_type = entry.compress_type if entry.compress_type is not None else self.compression
        # A known size lets zipfile decide ZIP64 for the local header up front.
        zinfo.file_size = entry.file_size
        with self._open_source(entry) as src, \
                out.open(zinfo, "w", force_zip64=policy.forces_zip64) as dst:
            self._pump(src, dst, entry, ProgressEventKind.ENTRY_BYTES_READ)
        self._emit(
            ProgressEventKind.AFTER_WRITE_ENTRY,
            entry_name=entry.name,
            bytes_transferred=entry.file_size,
            total_bytes=entry.file_size,
            entries_total=total,
        )

    # ------------------------------------------------------------------
    # Extract
    # ------------------------------------------------------------------

    def extract(self, name: str, sink: BinaryIO) -> int:
        """
        Decode one entry fully into `sink`. Returns the number of bytes written.
        The CRC is checked by zipfile at end of stream; a mismatch raises
        zipfile.BadZipFile.
        """
        entry = self._find(name)
        total = len(self._entries)
        self._emit(
            ProgressEventKind.BEFORE_EXTRACT_ENTRY,
            entry_name=entry.name,
            total_bytes=entry.file_size,
            entries_total=total,
        )
        with self._open_source(entry) as src:
            written = self._pump(src, sink, entry, ProgressEventKind.ENTRY_BYTES_WRITTEN)
        self._emit(
            ProgressEventKind.AFTER_EXTRACT_ENTRY,
            entry_name=entry.name,
            bytes_transferred=written,
            total_bytes=entry.file_size,
            entries_total=total,
        )
        return written

    def extract_to(self, name: str, directory) -> Path:
        """Extract one entry below `directory`, keeping its archive path. Returns the file path."""
        target = Path(directory).joinpath(*name.split("/"))
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "wb") as sink:
            self.extract(name, sink)
        return target
