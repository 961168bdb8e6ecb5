# ziptrials/verification/data_models/failure_record.py
# FailureRecord data class, failure type registry and TrialFailure.

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# FAILURE TYPE REGISTRY
# ---------------------------------------------------------------------------
# Exit code mapping:
#   Code 1 -- round-trip assertion failures
#   Code 2 -- missing precondition (fixture archive, companion tool)
#   Code 3 -- trial construction or engine errors
#   Code 4 -- internal harness errors

FAILURE_TYPES = {
    # Exit Code 1
    "CHECKSUM_MISMATCH":       1,
    "CHECKSUM_MISSING":        1,
    "ENTRY_COUNT_MISMATCH":    1,
    "ZIP64_FLAG_MISMATCH":     1,
    "ARCHIVE_TOO_SMALL":       1,
    "EXTRACTION_FAILURE":      1,
    "LISTING_COUNT_MISMATCH":  1,
    # Exit Code 2
    "MISSING_ARTIFACT":        2,
    "MISSING_TOOL":            2,
    # Exit Code 3
    "NAME_COLLISION":          3,
    "RUNAWAY_SCAN":            3,
    "ENGINE_ERROR":            3,
    "CONTRACT_VIOLATION":      3,
    "EXTERNAL_TOOL_FAILURE":   3,
    # Exit Code 4
    "HARNESS_INTERNAL_ERROR":  4,
}


class TrialFailure(RuntimeError):
    """
    Hard failure inside one trial.

    The message starts with the failure type id, like every harness
    RuntimeError, so FailureHandler.handle_from_exception() can classify it.
    The trial context rides along for the failure record.

    Attributes
    ----------
    failure_type_id : str
    detail          : str
    trial_index     : int   (-1 when raised outside a trial)
    policies        : str   e.g. "Never->AsNecessary"
    entry_name      : str
    """

    def __init__(
        self,
        failure_type_id: str,
        detail:          str,
        trial_index:     int = -1,
        policies:        str = "",
        entry_name:      str = "",
    ) -> None:
        self.failure_type_id = failure_type_id
        self.detail          = detail
        self.trial_index     = trial_index
        self.policies        = policies
        self.entry_name      = entry_name
        context = []
        if trial_index >= 0:
            context.append(f"trial={trial_index}")
        if policies:
            context.append(f"zip64={policies}")
        if entry_name:
            context.append(f"entry={entry_name}")
        suffix = f" [{' '.join(context)}]" if context else ""
        super().__init__(f"{failure_type_id}: {detail}{suffix}")


@dataclass
class FailureRecord:
    """
    Failure record written to disk by the FailureHandler on any hard failure.

    All fields are mandatory. Written as JSON to the runs directory.

    Fields:
      failure_type_id  -- Key from FAILURE_TYPES registry.
      exit_code        -- Integer exit code (1-4).
      trial_index      -- Index of the failing trial. -1 if not applicable.
      policies         -- "incoming->outgoing" ZIP64 policies. Empty if not applicable.
      entry_name       -- Entry involved in the failure. Empty if not applicable.
      detected_at_iso  -- UTC ISO-8601 timestamp of failure detection.
      run_id           -- Run identifier for this harness invocation.
      harness_version  -- HARNESS_VERSION at time of failure.
      seed             -- Random seed of the run, for reproduction.
      detail           -- Human-readable failure description.
    """
    failure_type_id: str
    exit_code:       int
    trial_index:     int
    policies:        str
    entry_name:      str
    detected_at_iso: str
    run_id:          str
    harness_version: str
    seed:            int
    detail:          str
