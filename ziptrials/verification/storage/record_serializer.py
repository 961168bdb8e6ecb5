# ziptrials/verification/storage/record_serializer.py
# RecordSerializer -- serializes TrialResult sets to JSON files.
#
# File name format: {run_id}_{stage}_{timestamp}.json
# The runs directory is created if it does not exist.
#
# Zip64Policy and OperationKind are serialized as their .value strings.

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from ziptrials.verification.data_models.trial_result import TrialResult
from ziptrials.verification.data_models.trial_spec import TrialSpec
from ziptrials.verification.harness_version import HARNESS_VERSION, STORAGE_FORMAT_VERSION


def _serialize_spec(spec: TrialSpec) -> dict:
    return {
        "trial_index":     spec.trial_index,
        "incoming_policy": spec.incoming_policy.value,
        "outgoing_policy": spec.outgoing_policy.value,
        "operation":       spec.operation.value,
        "entry_count":     spec.entry_count,
        "mutate":          spec.mutate,
        "huge_archive":    spec.huge_archive,
        "description":     spec.description,
    }


def _serialize_result(result: TrialResult) -> dict:
    return {
        "spec":             _serialize_spec(result.spec),
        "passed":           result.passed,
        "entries_created":  result.entries_created,
        "entries_verified": result.entries_verified,
        "used_zip64":       result.used_zip64,
        "artifact_path":    result.artifact_path,
        "artifact_size":    result.artifact_size,
        "removed_pattern":  result.removed_pattern,
        "renamed_entry":    result.renamed_entry,
        "timestamp_iso":    result.timestamp_iso,
    }


class RecordSerializer:
    """Serializes a list of TrialResults to one JSON file per call."""

    def serialize(
        self,
        results:  List[TrialResult],
        runs_dir: Path,
        run_id:   str,
        seed:     int,
        stage:    str = "TRIALS",
    ) -> Path:
        """
        Write results to a JSON file in runs_dir.
        Returns the path of the written file.
        """
        runs_dir = Path(runs_dir)
        runs_dir.mkdir(parents=True, exist_ok=True)

        ts       = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filepath = runs_dir / f"{run_id}_{stage}_{ts}.json"

        payload = {
            "format_version":  STORAGE_FORMAT_VERSION,
            "harness_version": HARNESS_VERSION,
            "run_id":          run_id,
            "seed":            seed,
            "stage":           stage,
            "trial_count":     len(results),
            "records":         [_serialize_result(r) for r in results],
        }

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

        return filepath
