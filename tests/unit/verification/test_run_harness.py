import json
from pathlib import Path

import pytest

from ziptrials.verification.run_harness import main


def _run(argv):
    with pytest.raises(SystemExit) as info:
        main(argv)
    return info.value.code


# =============================================================================
# SECTION 1 -- End-to-end CLI runs
# =============================================================================

class TestRunHarnessMain:
    def test_create_only_run_passes(self, tmp_path, capsys):
        runs_dir = tmp_path / "runs"
        code = _run([
            "--runs-dir", str(runs_dir),
            "--work-dir", str(tmp_path / "work"),
            "--seed", "7",
            "--skip-convert",
            "--skip-update",
            "--log-level", "WARNING",
        ])
        assert code == 0

        (pass_file,) = runs_dir.glob("*_PASS_*.json")
        record = json.loads(pass_file.read_text(encoding="utf-8"))
        assert record["result"] == "PASS"
        assert record["seed"] == 7
        assert record["trials_executed"] == 3
        assert record["zip64_artifacts"] >= 1

        trials = json.loads(Path(record["trial_record_path"]).read_text(encoding="utf-8"))
        assert [r["spec"]["outgoing_policy"] for r in trials["records"]] == ["Always", "Never", "AsNecessary"]
        assert "HARNESS RESULT: PASS" in capsys.readouterr().out

    def test_missing_huge_fixture_exits_2(self, tmp_path):
        runs_dir = tmp_path / "runs"
        code = _run([
            "--runs-dir", str(runs_dir),
            "--seed", "1",
            "--skip-create", "--skip-convert", "--skip-update",
            "--huge-archive", str(tmp_path / "absent.zip"),
        ])
        assert code == 2
        (fail_file,) = runs_dir.glob("*_FAIL_*.json")
        assert json.loads(fail_file.read_text(encoding="utf-8"))["failure_type_id"] == "MISSING_ARTIFACT"

    def test_invalid_update_count_exits_3(self, tmp_path):
        code = _run(["--runs-dir", str(tmp_path), "--num-updates", "0"])
        assert code == 3

    def test_missing_external_tool_exits_2(self, tmp_path):
        code = _run([
            "--runs-dir", str(tmp_path),
            "--skip-convert", "--skip-update",
            "--external-lister", "ziptrials-no-such-lister {archive}",
        ])
        assert code == 2

    def test_fixture_build_error_writes_fail_record(self, tmp_path, monkeypatch):
        def _disk_full(*args, **kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr("ziptrials.verification.run_harness.build_huge_archive", _disk_full)
        runs_dir = tmp_path / "runs"
        code = _run([
            "--runs-dir", str(runs_dir),
            "--work-dir", str(tmp_path / "work"),
            "--seed", "3",
            "--skip-create", "--skip-convert", "--skip-update",
            "--build-huge-archive",
        ])
        assert code == 4
        (fail_file,) = runs_dir.glob("*_FAIL_*.json")
        record = json.loads(fail_file.read_text(encoding="utf-8"))
        assert record["failure_type_id"] == "HARNESS_INTERNAL_ERROR"
        assert "No space left on device" in record["detail"]
