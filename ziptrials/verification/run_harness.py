# ziptrials/verification/run_harness.py
# ZIP64 Trial Matrix Harness -- Entry Point.
#
# Standard invocation:
#   python -m ziptrials.verification.run_harness --runs-dir runs
#
# With a live progress window and the huge-archive trial:
#   python -m ziptrials.verification.run_harness \
#       --runs-dir runs \
#       --launch-monitor \
#       --huge-archive /data/Zip64Huge.zip
#
# EXIT CODES:
#   0  -- Every trial passed.
#   1  -- Round-trip assertion failed (checksum, entry count, zip64 flag, size).
#   2  -- Missing precondition (fixture archive, companion tool).
#   3  -- Trial construction or engine error.
#   4  -- Internal harness error.
#
# Single-threaded. Trials run in matrix order and the first failure ends the
# run. The telemetry channel is closed in every case, so the monitor always
# receives "stop".

import argparse
import contextlib
import json
import logging
import shlex
import subprocess
import sys
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import numpy as np

from ziptrials.telemetry.channel import TelemetryChannel, channel_path
from ziptrials.telemetry.monitor import launch_monitor
from ziptrials.telemetry.progress_bridge import ProgressEventBridge
from ziptrials.verification.entry_factory import EntryFactory
from ziptrials.verification.external_listing import DEFAULT_EXTRACTOR, ExternalListingCheck
from ziptrials.verification.failure_handler import FailureHandler
from ziptrials.verification.harness_constants import (
    DEFAULT_CHANNEL,
    ENTRY_SIZE_RANGE,
    HUGE_UPDATE_PASSES,
    SIZE_BOUNDARY,
)
from ziptrials.verification.harness_version import HARNESS_VERSION
from ziptrials.verification.huge_archive import build_huge_archive
from ziptrials.verification.storage.record_serializer import RecordSerializer
from ziptrials.verification.trial_matrix import TrialMatrixGenerator
from ziptrials.verification.trial_runner import TrialMatrixRunner

logger = logging.getLogger(__name__)

# Seconds to wait for a launched monitor to bind, and to drain after "stop".
MONITOR_STARTUP_TIMEOUT: float = 5.0
MONITOR_SHUTDOWN_TIMEOUT: float = 5.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=f"ZIP64 Trial Matrix Harness v{HARNESS_VERSION}",
        prog="python -m ziptrials.verification.run_harness",
    )
    parser.add_argument(
        "--runs-dir",
        required=True,
        help="Directory for output run records.",
    )
    parser.add_argument(
        "--work-dir",
        default=None,
        help="Directory for trial files. Default: a temporary directory removed on exit.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for entry counts, sizes and content. Default: fresh entropy.",
    )
    parser.add_argument(
        "--channel",
        default=None,
        help=f"Telemetry channel name. Default: no telemetry ('{DEFAULT_CHANNEL}' with --launch-monitor).",
    )
    parser.add_argument(
        "--channel-dir",
        default=None,
        help="Directory holding channel sockets. Default: $ZIPTRIALS_CHANNEL_DIR or the temp dir.",
    )
    parser.add_argument(
        "--launch-monitor",
        action="store_true",
        default=False,
        help="Start a progress monitor process listening on the channel.",
    )
    parser.add_argument(
        "--huge-archive",
        default=None,
        help="Fixture archive larger than 4 GiB. Enables the huge-archive update trial.",
    )
    parser.add_argument(
        "--build-huge-archive",
        action="store_true",
        default=False,
        help="Build the huge fixture first (at --huge-archive, or inside the work dir).",
    )
    parser.add_argument(
        "--num-updates",
        type=int,
        default=HUGE_UPDATE_PASSES,
        help="Update passes applied to the huge archive.",
    )
    parser.add_argument(
        "--external-lister",
        default=None,
        help="Command listing an archive's entries, e.g. 'zipinfo -1 {archive}'.",
    )
    parser.add_argument(
        "--listing-marker",
        default="",
        help="Marker preceding each entry name in the lister's output. Default: one name per line.",
    )
    parser.add_argument(
        "--external-extract",
        action="store_true",
        default=False,
        help="Also extract each listed entry with 'unzip'.",
    )
    parser.add_argument("--skip-create", action="store_true", default=False)
    parser.add_argument("--skip-convert", action="store_true", default=False)
    parser.add_argument("--skip-update", action="store_true", default=False)
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Level for trial narration on stderr.",
    )
    return parser.parse_args(argv)


def _wait_for_monitor(name: str, directory: Optional[Path], timeout: float) -> None:
    """Poll until the monitor's socket exists, or give up silently after timeout."""
    path     = channel_path(name, directory)
    deadline = time.monotonic() + timeout
    while not path.exists() and time.monotonic() < deadline:
        time.sleep(0.05)


def _stop_monitor(proc: subprocess.Popen) -> None:
    try:
        proc.wait(timeout=MONITOR_SHUTDOWN_TIMEOUT)
    except subprocess.TimeoutExpired:
        proc.terminate()
        proc.wait()


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main harness pipeline.

      TrialMatrixGenerator -> TrialMatrixRunner (preconditions, trials)
        -> RecordSerializer -> pass record
      FailureHandler -- invoked only on failure

    On pass: prints summary and exits 0.
    On any failure: FailureHandler invokes sys.exit(non-zero).
    """
    args     = _parse_args(argv)
    run_id   = "RUN-" + datetime.now(timezone.utc).strftime("%Y%m%d") + "-" + str(uuid.uuid4())[:8].upper()
    runs_dir = Path(args.runs_dir)
    seed     = args.seed if args.seed is not None else int(np.random.SeedSequence().entropy % (2**31))

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # Verify runs directory write access before any trial work.
    try:
        runs_dir.mkdir(parents=True, exist_ok=True)
        test_file = runs_dir / f".write_test_{run_id}"
        test_file.touch()
        test_file.unlink()
    except OSError as exc:
        sys.stderr.write(
            f"MISSING_ARTIFACT: Cannot write to runs directory {runs_dir}: {exc}\n"
        )
        sys.exit(2)

    fh = FailureHandler(runs_dir=runs_dir, run_id=run_id, seed=seed)

    if args.num_updates < 1:
        fh.handle(
            failure_type_id="CONTRACT_VIOLATION",
            detail=f"--num-updates must be >= 1. Received: {args.num_updates}.",
        )

    channel_dir  = Path(args.channel_dir) if args.channel_dir else None
    channel_name = args.channel or (DEFAULT_CHANNEL if args.launch_monitor else None)
    monitor: Optional[subprocess.Popen] = None
    logger.info("Run %s, seed %d", run_id, seed)

    try:
        with contextlib.ExitStack() as stack:
            if args.work_dir:
                work_dir = Path(args.work_dir)
                work_dir.mkdir(parents=True, exist_ok=True)
            else:
                work_dir = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="ziptrials-")))

            if channel_name and args.launch_monitor:
                monitor = launch_monitor(channel_name, channel_dir)
                _wait_for_monitor(channel_name, channel_dir, MONITOR_STARTUP_TIMEOUT)
            channel = (
                stack.enter_context(TelemetryChannel.opened(channel_name, channel_dir))
                if channel_name else None
            )

            huge_archive = Path(args.huge_archive) if args.huge_archive else None
            if args.build_huge_archive:
                huge_archive = huge_archive or work_dir / "Zip64Huge.zip"
                try:
                    build_huge_archive(
                        huge_archive,
                        seed=seed,
                        bridge=ProgressEventBridge(channel) if channel is not None else None,
                    )
                except (RuntimeError, OSError, ValueError) as exc:
                    fh.handle_from_exception(exc)

            external = None
            if args.external_lister:
                external = ExternalListingCheck(
                    lister=shlex.split(args.external_lister),
                    marker=args.listing_marker,
                    extractor=DEFAULT_EXTRACTOR if args.external_extract else None,
                    channel=channel,
                )

            factory = EntryFactory(np.random.default_rng(seed), ENTRY_SIZE_RANGE)
            specs = TrialMatrixGenerator(
                factory,
                include_create=not args.skip_create,
                include_convert=not args.skip_convert,
                include_update=not args.skip_update,
                include_huge=huge_archive is not None,
            ).generate()

            runner = TrialMatrixRunner(
                work_dir=work_dir,
                factory=factory,
                channel=channel,
                huge_archive=huge_archive,
                num_updates=args.num_updates,
                size_boundary=SIZE_BOUNDARY,
                external_check=external,
            )
            try:
                results = runner.run_all(specs)
            except (RuntimeError, OSError, ValueError) as exc:
                fh.handle_from_exception(exc)
    finally:
        if monitor is not None:
            _stop_monitor(monitor)

    try:
        trials_path = RecordSerializer().serialize(results, runs_dir, run_id, seed)
    except OSError as exc:
        fh.handle("HARNESS_INTERNAL_ERROR", f"Failed to serialize trial records: {exc}")

    # -----------------------------------------------------------------------
    # PASS: Write pass record and exit 0.
    # -----------------------------------------------------------------------
    ts = _now_iso()
    zip64_count = sum(1 for r in results if r.used_zip64)
    pass_record = {
        "result":            "PASS",
        "run_id":            run_id,
        "harness_version":   HARNESS_VERSION,
        "seed":              seed,
        "trials_executed":   len(results),
        "zip64_artifacts":   zip64_count,
        "trial_record_path": str(trials_path),
        "timestamp_iso":     ts,
    }

    ts_compact    = ts.replace(":", "").replace("-", "")[:16]
    pass_filepath = runs_dir / f"{run_id}_PASS_{ts_compact}.json"
    try:
        with open(pass_filepath, "w", encoding="utf-8") as f:
            json.dump(pass_record, f, indent=4)
    except OSError as exc:
        fh.handle("HARNESS_INTERNAL_ERROR", f"Failed to write pass record: {exc}")

    print(
        f"HARNESS RESULT: PASS\n"
        f"Run ID:          {run_id}\n"
        f"Harness version: {HARNESS_VERSION}\n"
        f"Seed:            {seed}\n"
        f"Trials:          {len(results)}\n"
        f"ZIP64 artifacts: {zip64_count}\n"
        f"Pass record:     {pass_filepath}\n"
        f"Timestamp:       {ts}"
    )
    sys.exit(0)


def run_harness(
    runs_dir:     str,
    seed:         Optional[int] = None,
    work_dir:     Optional[str] = None,
    huge_archive: Optional[str] = None,
    extra_args:   Optional[List[str]] = None,
) -> int:
    """
    Programmatic entry point.

    Runs the harness in a child process exactly as if invoked via
        python -m ziptrials.verification.run_harness --runs-dir <runs_dir> ...
    and returns its exit code (0-4, see module header).
    """
    cmd = [
        sys.executable,
        "-m", "ziptrials.verification.run_harness",
        "--runs-dir", runs_dir,
    ]
    if seed is not None:
        cmd += ["--seed", str(seed)]
    if work_dir is not None:
        cmd += ["--work-dir", work_dir]
    if huge_archive is not None:
        cmd += ["--huge-archive", huge_archive]
    cmd += list(extra_args or [])
    proc = subprocess.run(cmd)
    return proc.returncode


if __name__ == "__main__":
    main()
