# ziptrials/verification/failure_handler.py
# FailureHandler -- hard failure policy enforcement for the harness.
#
# Any failed trial assertion ends the run: no catch-and-continue, no retry.
# The handler writes a FailureRecord, prints the failure summary and exits
# with the code registered for the failure type. If writing the record itself
# fails, partial information goes to stderr and the exit code is 4.

import json
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from ziptrials.verification.data_models.failure_record import (
    FAILURE_TYPES,
    FailureRecord,
    TrialFailure,
)
from ziptrials.verification.harness_version import HARNESS_VERSION


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FailureHandler:
    """
    On any hard failure:
      1. Construct FailureRecord.
      2. Write FailureRecord JSON to the runs directory.
      3. Print failure summary to stdout.
      4. Call sys.exit(exit_code) -- always the last operation.
    """

    def __init__(
        self,
        runs_dir: Path,
        run_id:   str,
        seed:     int,
    ):
        self._runs_dir = Path(runs_dir)
        self._run_id   = run_id
        self._seed     = seed

    def handle(
        self,
        failure_type_id: str,
        detail:          str,
        trial_index:     int = -1,
        policies:        str = "",
        entry_name:      str = "",
    ) -> None:
        """Execute the hard failure policy. This method does not return."""
        exit_code   = FAILURE_TYPES.get(failure_type_id, 4)
        detected_at = _now_iso()

        record = FailureRecord(
            failure_type_id=failure_type_id,
            exit_code=exit_code,
            trial_index=trial_index,
            policies=policies,
            entry_name=entry_name,
            detected_at_iso=detected_at,
            run_id=self._run_id,
            harness_version=HARNESS_VERSION,
            seed=self._seed,
            detail=detail,
        )

        try:
            self._runs_dir.mkdir(parents=True, exist_ok=True)
            ts_compact = detected_at.replace(":", "").replace("-", "").replace("+", "Z")[:16]
            filepath   = self._runs_dir / f"{self._run_id}_FAIL_{ts_compact}.json"

            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(asdict(record), f, indent=4)

            trial = f"{trial_index} (zip64={policies})" if trial_index >= 0 else "(not applicable)"
            print(
                f"HARNESS RESULT: FAIL\n"
                f"Failure type:   {failure_type_id}\n"
                f"Exit code:      {exit_code}\n"
                f"Trial:          {trial}\n"
                f"Entry:          {entry_name or '(not applicable)'}\n"
                f"Seed:           {self._seed}\n"
                f"Detail:         {detail[:200]}\n"
                f"Record written: {filepath}"
            )

        except OSError as exc:
            sys.stderr.write(
                f"HARNESS_INTERNAL_ERROR: FailureHandler failed to write record: {exc}\n"
                f"Original failure: {failure_type_id} -- {detail}\n"
            )
            sys.exit(4)

        sys.exit(exit_code)

    def handle_from_exception(self, exc: Exception) -> None:
        """
        Classify an exception and invoke handle().

        A TrialFailure carries its own type and trial context. Any other
        RuntimeError is classified by its "FAILURE_TYPE_ID: detail" prefix;
        everything else is HARNESS_INTERNAL_ERROR.
        """
        if isinstance(exc, TrialFailure):
            self.handle(
                failure_type_id=exc.failure_type_id,
                detail=exc.detail,
                trial_index=exc.trial_index,
                policies=exc.policies,
                entry_name=exc.entry_name,
            )
            return

        msg = str(exc)
        failure_type_id = "HARNESS_INTERNAL_ERROR"
        if isinstance(exc, RuntimeError):
            for known_type in FAILURE_TYPES:
                if msg.startswith(known_type + ":") or msg.startswith(known_type + " "):
                    failure_type_id = known_type
                    break
        else:
            msg = f"{type(exc).__name__}: {msg}"
        self.handle(failure_type_id=failure_type_id, detail=msg)
