# ziptrials/engine/__init__.py
# Archive engine adapter driven by the trial harness.
#
# The engine is the standard-library zipfile module. This package only adds
# the ZIP64 policy, the progress event stream and the in-place update
# operations the harness needs; it does no compression of its own.

from .policy import Zip64Policy
from .events import ProgressEvent, ProgressEventKind, ProgressObserver
from .zip64_inspector import Zip64Inspector, Zip64Markers
from .archive_engine import DEFAULT_BUFFER_SIZE, EntryInfo, ZipArchive, archive_name

__all__ = [
    "Zip64Policy",
    "ProgressEvent",
    "ProgressEventKind",
    "ProgressObserver",
    "Zip64Inspector",
    "Zip64Markers",
    "DEFAULT_BUFFER_SIZE",
    "EntryInfo",
    "ZipArchive",
    "archive_name",
]
