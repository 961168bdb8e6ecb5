# ziptrials/verification/external_listing.py
# ExternalListingCheck -- cross-checks an archive with an independent
# command-line zip tool.
#
# The tool's textual listing is scanned for entry names and the count is
# compared with the engine's own count. Optionally each listed entry is then
# extracted with the tool and the extracted file checked for existence.
#
# The scan is capped: a listing that yields more than SCAN_CAP_MULTIPLIER
# times the expected number of names is treated as runaway output and fails
# hard instead of being truncated.

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from ziptrials.engine.archive_engine import ZipArchive
from ziptrials.telemetry.channel import TelemetryChannel
from ziptrials.telemetry.protocol import BAR_ARCHIVE, pb_max_line, pb_step_line, status_line
from ziptrials.verification.harness_constants import SCAN_CAP_MULTIPLIER

logger = logging.getLogger(__name__)

# Info-ZIP: one entry name per line.
DEFAULT_LISTER = ("zipinfo", "-1", "{archive}")
DEFAULT_EXTRACTOR = ("unzip", "-qq", "-o", "{archive}", "{entry}", "-d", "{dest}")


def _is_directory(name: str) -> bool:
    return name.endswith("/") or name.endswith("\\")


def scan_entry_listing(output: str, expected_count: int, marker: str = "") -> List[str]:
    """
    Extract file entry names from a tool's listing.

    With a marker (e.g. "Filename: "), a name is the rest of each line that
    contains the marker. Without one, every non-blank line is a name.
    Directory names (trailing slash or backslash) are skipped.

    Raises RuntimeError (RUNAWAY_SCAN) once more than
    expected_count * SCAN_CAP_MULTIPLIER names have been seen.
    """
    cap = max(expected_count, 1) * SCAN_CAP_MULTIPLIER
    names: List[str] = []
    cycles = 0
    for line in output.splitlines():
        if marker:
            x = line.find(marker)
            if x < 0:
                continue
            name = line[x + len(marker):].strip()
        else:
            name = line.strip()
            if not name:
                continue
        cycles += 1
        if cycles > cap:
            raise RuntimeError(
                f"RUNAWAY_SCAN: Listing yielded more than {cap} names for "
                f"{expected_count} expected entries."
            )
        if not _is_directory(name):
            names.append(name)
    return names


class ExternalListingCheck:
    """
    Runs an external lister (and optionally an extractor) against an archive.

    Command templates are argv sequences; "{archive}", "{entry}" and "{dest}"
    are substituted per call.
    """

    def __init__(
        self,
        lister:    Sequence[str] = DEFAULT_LISTER,
        marker:    str = "",
        extractor: Optional[Sequence[str]] = None,
        channel:   Optional[TelemetryChannel] = None,
        timeout:   Optional[float] = None,
    ):
        self.lister    = tuple(lister)
        self.marker    = marker
        self.extractor = tuple(extractor) if extractor else None
        self.timeout   = timeout
        self._channel  = channel

    def _send(self, line: str) -> None:
        if self._channel is not None:
            self._channel.send(line)

    def require_tools(self) -> None:
        """Raises RuntimeError (MISSING_TOOL) if a configured executable is not found."""
        commands = [self.lister] + ([self.extractor] if self.extractor else [])
        for command in commands:
            if shutil.which(command[0]) is None:
                raise RuntimeError(
                    f"MISSING_TOOL: Executable '{command[0]}' does not exist on PATH."
                )

    def _run(self, template: Sequence[str], **values) -> str:
        cmd = [part.format(**values) for part in template]
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise RuntimeError(
                f"EXTERNAL_TOOL_FAILURE: '{cmd[0]}' timed out after {self.timeout}s."
            ) from exc
        if proc.returncode != 0:
            raise RuntimeError(
                f"EXTERNAL_TOOL_FAILURE: '{cmd[0]}' exited {proc.returncode}: "
                f"{proc.stderr.strip()[:200]}"
            )
        return proc.stdout

    def list_entries(self, archive_path, expected_count: int) -> List[str]:
        output = self._run(self.lister, archive=str(archive_path), entry="", dest="")
        return scan_entry_listing(output, expected_count, self.marker)

    def run(self, archive_path) -> int:
        """
        List (and extract, if configured) every entry. Returns the number of
        file entries listed.
        """
        archive_path = Path(archive_path)
        self.require_tools()

        self._send(status_line("Counting entries in the zip file..."))
        with ZipArchive.read(archive_path) as archive:
            expected = len(archive)

        self._send(status_line(f"Using {self.lister[0]} to list the entries..."))
        names = self.list_entries(archive_path, expected)
        logger.info("Files listed by %s: %d", self.lister[0], len(names))
        if len(names) != expected:
            raise RuntimeError(
                f"LISTING_COUNT_MISMATCH: {self.lister[0]} listed {len(names)} entries, "
                f"engine reports {expected}."
            )

        if self.extractor is not None:
            self._extract_each(archive_path, names)
        return len(names)

    def _extract_each(self, archive_path: Path, names: List[str]) -> None:
        self._send(pb_max_line(BAR_ARCHIVE, len(names) * 2))
        self._send(status_line("Extracting the entries..."))
        with tempfile.TemporaryDirectory(prefix="ziptrials-extract-") as dest:
            for i, name in enumerate(names, start=1):
                self._send(status_line(f"Extracting {name} ({i}/{len(names)})..."))
                self._run(self.extractor, archive=str(archive_path), entry=name, dest=dest)
                self._send(pb_step_line(BAR_ARCHIVE))
                path = Path(dest).joinpath(*name.replace("\\", "/").split("/"))
                if not path.is_file():
                    raise RuntimeError(
                        f"EXTRACTION_FAILURE: Extracted file ({path}) does not exist."
                    )
                path.unlink()
                self._send(pb_step_line(BAR_ARCHIVE))
