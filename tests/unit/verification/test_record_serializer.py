import json

from ziptrials.engine.policy import Zip64Policy
from ziptrials.verification.data_models.trial_result import TrialResult
from ziptrials.verification.data_models.trial_spec import OperationKind, TrialSpec
from ziptrials.verification.harness_version import HARNESS_VERSION, STORAGE_FORMAT_VERSION
from ziptrials.verification.storage.record_serializer import RecordSerializer


def _result(index: int) -> TrialResult:
    spec = TrialSpec(
        trial_index=index,
        incoming_policy=Zip64Policy.NEVER,
        outgoing_policy=Zip64Policy.AS_NECESSARY,
        operation=OperationKind.UPDATE,
        entry_count=9,
        mutate=True,
        huge_archive=False,
        description="update",
    )
    return TrialResult(
        spec=spec,
        passed=True,
        entries_created=9,
        entries_verified=5,
        used_zip64=False,
        artifact_path="/tmp/x.zip",
        artifact_size=1234,
        removed_pattern="*.txt",
        renamed_entry="Data4.bin -> Data4.bin.renamed",
        timestamp_iso="2026-01-01T00:00:00+00:00",
    )


# =============================================================================
# SECTION 1 -- serialize()
# =============================================================================

class TestRecordSerializer:
    def test_file_name_and_payload(self, tmp_path):
        runs_dir = tmp_path / "runs"
        path = RecordSerializer().serialize([_result(12), _result(13)], runs_dir, "RUN-X", seed=7)

        assert path.parent == runs_dir
        assert path.name.startswith("RUN-X_TRIALS_")
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["format_version"] == STORAGE_FORMAT_VERSION
        assert payload["harness_version"] == HARNESS_VERSION
        assert payload["seed"] == 7
        assert payload["trial_count"] == 2

        first = payload["records"][0]
        assert first["spec"]["incoming_policy"] == "Never"
        assert first["spec"]["outgoing_policy"] == "AsNecessary"
        assert first["spec"]["operation"] == "update"
        assert first["removed_pattern"] == "*.txt"

    def test_empty_result_list(self, tmp_path):
        path = RecordSerializer().serialize([], tmp_path, "RUN-Y", seed=0, stage="PARTIAL")
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["stage"] == "PARTIAL"
        assert payload["records"] == []
