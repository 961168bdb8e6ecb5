# ziptrials/verification/trial_runner.py
# TrialMatrixRunner -- executes trials against the archive engine and asserts
# byte-exact round trips.
#
# Per trial:
#   Setup -> Create/Open -> Mutate (optional) -> Save -> Reopen
#         -> Extract & Verify -> Done
#
# Single-threaded. Trials run strictly in order and the first failure stops
# the run: a TrialFailure carrying the trial index, the policy combination and
# the entry name propagates to the caller. Telemetry is optional and never
# affects the outcome.

import contextlib
import logging
import zipfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from ziptrials.engine.archive_engine import ZipArchive, archive_name
from ziptrials.engine.policy import Zip64Policy
from ziptrials.telemetry.channel import TelemetryChannel
from ziptrials.telemetry.progress_bridge import PassKind, ProgressEventBridge
from ziptrials.telemetry.protocol import (
    BAR_OVERALL,
    announce_line,
    pb_max_line,
    pb_step_line,
    status_line,
)
from ziptrials.verification.checksum_registry import ChecksumRegistry
from ziptrials.verification.data_models.failure_record import FAILURE_TYPES, TrialFailure
from ziptrials.verification.data_models.trial_result import TrialResult
from ziptrials.verification.data_models.trial_spec import OperationKind, TrialSpec
from ziptrials.verification.entry_factory import EntryFactory
from ziptrials.verification.external_listing import ExternalListingCheck
from ziptrials.verification.harness_constants import (
    HUGE_UPDATE_BASE_SIZE,
    HUGE_UPDATE_JITTER,
    HUGE_UPDATE_PASSES,
    LARGE_BUFFER_SIZE,
    REMOVABLE_PATTERNS,
    RENAME_INDEX,
    RENAME_SUFFIX,
    SIZE_BOUNDARY,
)
from ziptrials.verification.large_archive_verifier import LargeArchiveVerifier

logger = logging.getLogger(__name__)

# Errors zipfile raises while reading back a damaged artifact.
_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _split_failure(message: str):
    """Split "TYPE_ID: detail" into (TYPE_ID, detail). Unknown prefixes map to HARNESS_INTERNAL_ERROR."""
    for known_type in FAILURE_TYPES:
        if message.startswith(known_type + ":"):
            return known_type, message[len(known_type) + 1:].strip()
    return "HARNESS_INTERNAL_ERROR", message


class TrialMatrixRunner:
    """
    Runs TrialSpecs produced by TrialMatrixGenerator.

    Each trial gets its own directory below work_dir holding its source
    files, artifacts and extraction output. The runner never deletes the
    huge fixture; everything else lives under work_dir.
    """

    def __init__(
        self,
        work_dir:       Path,
        factory:        EntryFactory,
        channel:        Optional[TelemetryChannel] = None,
        huge_archive:   Optional[Path] = None,
        num_updates:    int = HUGE_UPDATE_PASSES,
        size_boundary:  int = SIZE_BOUNDARY,
        external_check: Optional[ExternalListingCheck] = None,
    ):
        self.work_dir       = Path(work_dir)
        self.huge_archive   = Path(huge_archive) if huge_archive is not None else None
        self.num_updates    = num_updates
        self.size_boundary  = size_boundary
        self._factory       = factory
        self._channel       = channel
        self._bridge        = ProgressEventBridge(channel) if channel is not None else None
        self._verifier      = LargeArchiveVerifier(bridge=self._bridge)
        self._external      = external_check

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _send(self, line: str) -> None:
        if self._channel is not None:
            self._channel.send(line)

    @contextlib.contextmanager
    def _observed(self, archive: ZipArchive, verb: str = "") -> Iterator[None]:
        if self._bridge is None:
            yield
            return
        with self._bridge.observing(archive, verb):
            yield

    @staticmethod
    def _fail(spec: TrialSpec, failure_type_id: str, detail: str, entry_name: str = "") -> TrialFailure:
        return TrialFailure(
            failure_type_id,
            detail,
            trial_index=spec.trial_index,
            policies=spec.policies,
            entry_name=entry_name,
        )

    def _trial_dir(self, spec: TrialSpec) -> Path:
        path = self.work_dir / f"trial-{spec.trial_index:02d}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def check_preconditions(self, specs: Sequence[TrialSpec]) -> None:
        """
        Fail before any trial work if a required fixture or tool is missing.
        Raises RuntimeError (MISSING_ARTIFACT / MISSING_TOOL).
        """
        if any(s.huge_archive for s in specs):
            if self.huge_archive is None or not self.huge_archive.is_file():
                raise RuntimeError(
                    f"MISSING_ARTIFACT: Required zip file does not exist ({self.huge_archive})."
                )
        if self._external is not None:
            self._external.require_tools()

    # ------------------------------------------------------------------
    # Save / verify steps shared by all trial kinds
    # ------------------------------------------------------------------

    def _save(self, archive: ZipArchive, path: Optional[Path], policy: Zip64Policy, spec: TrialSpec) -> Path:
        logger.info("---------------Saving to %s with Zip64=%s...", path or archive.path, policy.value)
        archive.comment = f"This archive uses Zip64Option={policy.value}"
        try:
            with self._observed(archive):
                saved = archive.save(path, policy)
        except zipfile.LargeZipFile as exc:
            raise self._fail(
                spec, "ENGINE_ERROR",
                f"Engine refused to save with zip64={policy.value}: {exc}",
            ) from exc
        self._assert_policy(archive.used_zip64, policy, spec)
        return saved

    def _assert_policy(self, used_zip64: Optional[bool], policy: Zip64Policy, spec: TrialSpec) -> None:
        # AsNecessary is left to the engine's own thresholds.
        if policy is Zip64Policy.ALWAYS and used_zip64 is not True:
            raise self._fail(
                spec, "ZIP64_FLAG_MISMATCH",
                f"Saved with zip64=Always but output reports used_zip64={used_zip64}.",
            )
        if policy is Zip64Policy.NEVER and used_zip64 is not False:
            raise self._fail(
                spec, "ZIP64_FLAG_MISMATCH",
                f"Saved with zip64=Never but output reports used_zip64={used_zip64}.",
            )

    def _assert_huge(self, path: Path, spec: TrialSpec) -> int:
        size = path.stat().st_size
        if size <= self.size_boundary:
            raise self._fail(
                spec, "ARCHIVE_TOO_SMALL",
                f"The zip file ({path}) is not large enough: {size} <= {self.size_boundary}.",
            )
        return size

    def _count_entries(self, path: Path) -> int:
        with ZipArchive.read(path) as archive:
            return len(archive)

    def _extract_and_verify(
        self,
        path:        Path,
        registry:    ChecksumRegistry,
        extract_dir: Path,
        spec:        TrialSpec,
        names:       Optional[Sequence[str]] = None,
    ) -> int:
        """
        Reopen `path`, extract its entries (all, or only `names`) below
        extract_dir and verify each against the registry. Returns the number
        of entries verified.
        """
        logger.info("---------------Extracting %s ...", path.name)
        with ZipArchive.read(path) as archive:
            selected = list(names) if names is not None else archive.entry_names
            with self._observed(archive, "Extracting"):
                if self._bridge is not None:
                    self._bridge.begin_pass(PassKind.EXTRACT, len(selected))
                for name in selected:
                    info = archive.info(name)
                    logger.debug(
                        " %s  crc(%08X)  c(%08X) unc(%08X)",
                        name, info.crc, info.compress_size, info.file_size,
                    )
                    try:
                        extracted = archive.extract_to(name, extract_dir)
                    except _READ_ERRORS as exc:
                        raise self._fail(
                            spec, "EXTRACTION_FAILURE", f"Entry failed to extract: {exc}", name,
                        ) from exc
                    if name not in registry:
                        raise self._fail(spec, "CHECKSUM_MISSING", "Checksum is missing.", name)
                    if not registry.verify(name, extracted):
                        mismatch = registry.mismatches[-1]
                        raise self._fail(
                            spec, "CHECKSUM_MISMATCH",
                            f"Checksums do not match: expected {mismatch.expected}, "
                            f"actual {mismatch.actual}.",
                            name,
                        )
                if self._bridge is not None:
                    self._bridge.end_pass(PassKind.EXTRACT)
        logger.info("     Checksums match (%d entries).", len(selected))
        return len(selected)

    def _populate(self, archive: ZipArchive, registry: ChecksumRegistry, source_dir: Path, count: int) -> None:
        for path in self._factory.create_files(source_dir, count):
            name = archive_name(path)
            registry.record(name, path)
            archive.add_file(path)

    # ------------------------------------------------------------------
    # Trials
    # ------------------------------------------------------------------

    def run_trial(self, spec: TrialSpec) -> TrialResult:
        """
        Execute one trial. Returns its TrialResult on success.
        Raises TrialFailure on any failed assertion or engine error.
        """
        logger.info("==================Trial %d: %s", spec.trial_index, spec.description)
        self._send(announce_line(f"Zip64 trial {spec.trial_index}: {spec.operation.value}"))
        self._send(status_line(spec.description))
        try:
            if spec.huge_archive:
                return self._run_huge_update(spec)
            if spec.operation is OperationKind.CREATE:
                return self._run_create(spec)
            return self._run_convert(spec)
        except TrialFailure:
            raise
        except RuntimeError as exc:
            failure_type_id, detail = _split_failure(str(exc))
            raise self._fail(spec, failure_type_id, detail) from exc
        except _READ_ERRORS as exc:
            raise self._fail(spec, "EXTRACTION_FAILURE", f"Artifact cannot be read: {exc}") from exc

    def run_all(self, specs: Sequence[TrialSpec]) -> List[TrialResult]:
        """Check preconditions, then run every trial in order. Stops at the first failure."""
        self.check_preconditions(specs)
        return [self.run_trial(spec) for spec in specs]

    def _finish(
        self,
        spec:             TrialSpec,
        artifact:         Path,
        used_zip64:       Optional[bool],
        entries_created:  int,
        entries_verified: int,
        removed_pattern:  str = "",
        renamed_entry:    str = "",
    ) -> TrialResult:
        if self._external is not None:
            self._external.run(artifact)
        self._send(status_line(f"Trial {spec.trial_index} passed"))
        return TrialResult(
            spec=spec,
            passed=True,
            entries_created=entries_created,
            entries_verified=entries_verified,
            used_zip64=bool(used_zip64),
            artifact_path=str(artifact),
            artifact_size=artifact.stat().st_size,
            removed_pattern=removed_pattern,
            renamed_entry=renamed_entry,
            timestamp_iso=_now_iso(),
        )

    def _run_create(self, spec: TrialSpec) -> TrialResult:
        trial_dir = self._trial_dir(spec)
        artifact  = trial_dir / f"Zip64_Create-{spec.trial_index}.zip"
        registry  = ChecksumRegistry()

        logger.info("Creating file %s, zip64=%s, %d entries", artifact.name, spec.outgoing_policy.value, spec.entry_count)
        with ZipArchive() as zip1:
            self._populate(zip1, registry, trial_dir / "src", spec.entry_count)
            self._save(zip1, artifact, spec.outgoing_policy, spec)
            used_zip64 = zip1.used_zip64

        verified = self._extract_and_verify(artifact, registry, trial_dir / "extract", spec)
        if verified != spec.entry_count:
            raise self._fail(
                spec, "ENTRY_COUNT_MISMATCH",
                f"The zip file has the wrong number of entries: {verified} != {spec.entry_count}.",
            )
        return self._finish(spec, artifact, used_zip64, spec.entry_count, verified)

    def _run_convert(self, spec: TrialSpec) -> TrialResult:
        trial_dir  = self._trial_dir(spec)
        artifact_a = trial_dir / f"Zip64_Convert-{spec.trial_index}.A.zip"
        artifact_b = trial_dir / f"Zip64_Convert-{spec.trial_index}.B.zip"
        registry   = ChecksumRegistry()

        logger.info("Creating file %s, zip64=%s, %d entries", artifact_a.name, spec.incoming_policy.value, spec.entry_count)
        with ZipArchive() as zip1:
            self._populate(zip1, registry, trial_dir / "src", spec.entry_count)
            self._save(zip1, artifact_a, spec.incoming_policy, spec)

        count = self._count_entries(artifact_a)
        if count != spec.entry_count:
            raise self._fail(
                spec, "ENTRY_COUNT_MISMATCH",
                f"The zip file has the wrong number of entries: {count} != {spec.entry_count}.",
            )
        self._extract_and_verify(artifact_a, registry, trial_dir / "extract.A", spec)

        removed_pattern, renamed_entry, removed = "", "", []
        with ZipArchive.read(artifact_a) as zip2:
            if spec.mutate:
                old_name = zip2.entry_names[RENAME_INDEX]
                new_name = old_name + RENAME_SUFFIX
                logger.info("---------------Updating:  Renaming %s -> %s", old_name, new_name)
                zip2.rename(old_name, new_name)
                registry.track_rename(old_name, new_name)
                renamed_entry = f"{old_name} -> {new_name}"

                removed_pattern = self._factory.choice(REMOVABLE_PATTERNS)
                logger.info("---------------Updating:  Removing %s entries...", removed_pattern)
                removed = zip2.remove_matching(removed_pattern)
            self._save(zip2, artifact_b, spec.outgoing_policy, spec)
            used_zip64 = zip2.used_zip64

        expected = spec.entry_count - len(removed)
        verified = self._extract_and_verify(artifact_b, registry, trial_dir / "extract.B", spec)
        if verified != expected:
            raise self._fail(
                spec, "ENTRY_COUNT_MISMATCH",
                f"Re-saved zip file has {verified} entries, expected {expected}.",
            )
        return self._finish(
            spec, artifact_b, used_zip64, spec.entry_count, verified,
            removed_pattern=removed_pattern, renamed_entry=renamed_entry,
        )

    def _run_huge_update(self, spec: TrialSpec) -> TrialResult:
        trial_dir = self._trial_dir(spec)
        fixture   = self.huge_archive
        if fixture is None or not fixture.is_file():
            raise self._fail(spec, "MISSING_ARTIFACT", f"Required zip file does not exist ({fixture}).")

        self._send(announce_line("Zip64 Update"))
        self._send(pb_max_line(BAR_OVERALL, self.num_updates * 2 + 1))
        self._assert_huge(fixture, spec)

        self._send(status_line("Verifying the zip"))
        entries = self._verifier.verify(fixture)
        self._send(pb_step_line(BAR_OVERALL))

        registry  = ChecksumRegistry()
        lo, hi    = HUGE_UPDATE_BASE_SIZE
        base_size = int(self._factory.entry_size_between(lo, hi))
        used_zip64 = None
        added: List[str] = []
        for j in range(self.num_updates):
            self._send(announce_line("Zip64 Update"))
            subdir = trial_dir / f"newfolder-{j}"
            size   = base_size + int(self._factory.entry_size_between(0, HUGE_UPDATE_JITTER - 1))
            new_file = self._factory.write_binary(subdir / "newfile.txt", size)
            registry.record(archive_name(new_file, subdir.name), new_file)

            logger.info("Updating the zip file...")
            self._send(status_line("Updating the zip file..."))
            with ZipArchive.read(fixture, buffer_size=LARGE_BUFFER_SIZE) as archive:
                names = archive.update_directory(subdir, subdir.name)
                self._save(archive, None, Zip64Policy.ALWAYS, spec)
                used_zip64 = archive.used_zip64
            added.extend(names)

            self._send(status_line("Verifying the zip"))
            self._send(pb_step_line(BAR_OVERALL))
            self._assert_huge(fixture, spec)
            entries = self._verifier.verify(fixture)
            self._extract_and_verify(fixture, registry, trial_dir / f"extract-{j}", spec, names=names)
            self._send(pb_step_line(BAR_OVERALL))

        return self._finish(spec, fixture, used_zip64, entries, len(added))
