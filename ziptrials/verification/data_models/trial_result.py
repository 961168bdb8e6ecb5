# ziptrials/verification/data_models/trial_result.py
# TrialResult data class.

from dataclasses import dataclass

from ziptrials.verification.data_models.trial_spec import TrialSpec


@dataclass(frozen=True)
class TrialResult:
    """
    Record of one completed trial.

    Fields:
      spec             -- The TrialSpec that was executed.
      passed           -- True iff every assertion of the trial held.
      entries_created  -- Entries generated (or present in the fixture).
      entries_verified -- Entries extracted and checksum-verified at the end.
      used_zip64       -- ZIP64 flag reported by the final save.
      artifact_path    -- Final archive of the trial.
      artifact_size    -- Size of the final archive in bytes.
      removed_pattern  -- Extension class removed by a mutating update. Empty otherwise.
      renamed_entry    -- "old -> new" for a mutating update. Empty otherwise.
      timestamp_iso    -- UTC ISO-8601 completion time (audit only).
    """
    spec:             TrialSpec
    passed:           bool
    entries_created:  int
    entries_verified: int
    used_zip64:       bool
    artifact_path:    str
    artifact_size:    int
    removed_pattern:  str
    renamed_entry:    str
    timestamp_iso:    str
