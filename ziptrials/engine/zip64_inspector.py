# ziptrials/engine/zip64_inspector.py
# Zip64Inspector -- reads a saved archive's raw records and reports which
# ZIP64 structures it actually contains.
#
# Read-only. Never loads entry data: only the tail of the file and the fixed
# part plus extra field of each local header are read.

import os
import struct
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple

_SIG_EOCD         = b"PK\x05\x06"
_SIG_ZIP64_LOCATOR = b"PK\x06\x07"
_SIG_LOCAL_HEADER = b"PK\x03\x04"

_EOCD_SIZE          = 22
_ZIP64_LOCATOR_SIZE = 20
_MAX_COMMENT        = 0xFFFF
_LOCAL_HEADER_SIZE  = 30
_LOCAL_HEADER_FMT   = "<4s2B4HL2L2H"
_ZIP64_EXTRA_ID     = 0x0001


def _read_at(fp, offset: int, size: int) -> bytes:
    fp.seek(offset, os.SEEK_SET)
    return fp.read(max(0, size))


def _extra_ids(extra: bytes) -> Iterator[int]:
    """Yield the header ids of an extra field block. Stops at a truncated record."""
    pos = 0
    while pos + 4 <= len(extra):
        xid, xlen = struct.unpack_from("<HH", extra, pos)
        yield xid
        pos += 4 + xlen


@dataclass(frozen=True)
class Zip64Markers:
    """
    ZIP64 structures found in one archive.

    Fields:
      end_record     -- True if a ZIP64 end-of-central-directory locator precedes the EOCD.
      central_extras -- Central directory entries carrying a ZIP64 extra field.
      local_extras   -- Local headers carrying a ZIP64 extra field.
      entries        -- Number of entries inspected.
    """
    end_record:     bool
    central_extras: int
    local_extras:   int
    entries:        int

    @property
    def present(self) -> bool:
        return self.end_record or self.central_extras > 0 or self.local_extras > 0


class Zip64Inspector:
    """Inspects one archive file for ZIP64 records."""

    def __init__(self, archive_path: Path):
        self.archive_path = Path(archive_path)

    def _has_end_record(self, fp, file_size: int) -> bool:
        take = min(file_size, _EOCD_SIZE + _MAX_COMMENT + _ZIP64_LOCATOR_SIZE)
        tail = _read_at(fp, file_size - take, take)
        idx = tail.rfind(_SIG_EOCD)
        if idx < _ZIP64_LOCATOR_SIZE:
            return False
        return tail[idx - _ZIP64_LOCATOR_SIZE:idx - _ZIP64_LOCATOR_SIZE + 4] == _SIG_ZIP64_LOCATOR

    def _local_extra(self, fp, header_offset: int) -> bytes:
        header = _read_at(fp, header_offset, _LOCAL_HEADER_SIZE)
        if len(header) < _LOCAL_HEADER_SIZE:
            raise RuntimeError(
                f"ENGINE_ERROR: Truncated local header at offset {header_offset} "
                f"in {self.archive_path}."
            )
        fields = struct.unpack(_LOCAL_HEADER_FMT, header)
        if fields[0] != _SIG_LOCAL_HEADER:
            raise RuntimeError(
                f"ENGINE_ERROR: Bad local header signature at offset {header_offset} "
                f"in {self.archive_path}."
            )
        name_len, extra_len = fields[10], fields[11]
        return _read_at(fp, header_offset + _LOCAL_HEADER_SIZE + name_len, extra_len)

    def _scan(self, stop_at_first: bool) -> Tuple[bool, int, int, int]:
        file_size = self.archive_path.stat().st_size
        with zipfile.ZipFile(self.archive_path) as zf:
            infos = zf.infolist()
        with open(self.archive_path, "rb") as fp:
            end_record = self._has_end_record(fp, file_size)
            if end_record and stop_at_first:
                return True, 0, 0, len(infos)
            central = sum(1 for zi in infos if _ZIP64_EXTRA_ID in _extra_ids(zi.extra))
            if central and stop_at_first:
                return end_record, central, 0, len(infos)
            local = 0
            for zi in infos:
                if _ZIP64_EXTRA_ID in _extra_ids(self._local_extra(fp, zi.header_offset)):
                    local += 1
                    if stop_at_first:
                        break
        return end_record, central, local, len(infos)

    def inspect(self) -> Zip64Markers:
        """Full scan of the tail, the central directory and every local header."""
        end_record, central, local, entries = self._scan(stop_at_first=False)
        return Zip64Markers(
            end_record=end_record,
            central_extras=central,
            local_extras=local,
            entries=entries,
        )

    def uses_zip64(self) -> bool:
        """True as soon as any ZIP64 record is found."""
        end_record, central, local, _ = self._scan(stop_at_first=True)
        return end_record or central > 0 or local > 0
