import io
import zipfile

import pytest

from ziptrials.engine import (
    ProgressEventKind,
    ProgressObserver,
    ZipArchive,
    Zip64Policy,
    archive_name,
)


class _Recorder(ProgressObserver):
    def __init__(self):
        self.events = []

    def on_progress(self, event):
        self.events.append(event)


# =============================================================================
# SECTION 1 -- archive_name()
# =============================================================================

class TestArchiveName:
    def test_flattens_to_base_name(self, tmp_path):
        assert archive_name(tmp_path / "a" / "b" / "Data1.bin") == "Data1.bin"

    def test_prefixes_directory(self, tmp_path):
        assert archive_name(tmp_path / "Data1.bin", "newfolder-0") == "newfolder-0/Data1.bin"

    def test_normalizes_separators_in_directory(self, tmp_path):
        assert archive_name(tmp_path / "x.txt", "\\dir\\") == "dir/x.txt"


# =============================================================================
# SECTION 2 -- Save and reopen
# =============================================================================

class TestSaveAndReopen:
    @pytest.mark.parametrize("policy", list(Zip64Policy))
    def test_round_trip_preserves_names_and_content(self, tmp_path, source_files, policy):
        target = tmp_path / "out.zip"
        with ZipArchive() as archive:
            for path in source_files:
                archive.add_file(path)
            archive.save(target, policy)

        with ZipArchive.read(target) as archive:
            assert archive.entry_names == [p.name for p in source_files]
            for path in source_files:
                sink = io.BytesIO()
                archive.extract(path.name, sink)
                assert sink.getvalue() == path.read_bytes()

    def test_always_reports_zip64(self, tmp_path, source_files):
        with ZipArchive() as archive:
            for path in source_files:
                archive.add_file(path)
            archive.save(tmp_path / "a.zip", Zip64Policy.ALWAYS)
            assert archive.used_zip64 is True

    @pytest.mark.parametrize("policy", [Zip64Policy.NEVER, Zip64Policy.AS_NECESSARY])
    def test_small_archive_without_forcing_has_no_zip64(self, tmp_path, source_files, policy):
        with ZipArchive() as archive:
            for path in source_files:
                archive.add_file(path)
            archive.save(tmp_path / "a.zip", policy)
            assert archive.used_zip64 is False

    def test_used_zip64_is_none_before_first_save(self, source_files):
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            assert archive.used_zip64 is None

    def test_reopened_archive_is_readable_by_zipfile(self, tmp_path, source_files):
        target = tmp_path / "a.zip"
        with ZipArchive() as archive:
            for path in source_files:
                archive.add_file(path)
            archive.save(target, Zip64Policy.ALWAYS)
        with zipfile.ZipFile(target) as zf:
            assert zf.testzip() is None
            assert len(zf.infolist()) == len(source_files)

    def test_comment_survives_save(self, tmp_path, source_files):
        target = tmp_path / "a.zip"
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            archive.comment = "This archive uses Zip64Option=Always"
            archive.save(target, Zip64Policy.ALWAYS)
        with ZipArchive.read(target) as archive:
            assert archive.comment == "This archive uses Zip64Option=Always"

    def test_save_without_path_on_new_archive_raises(self):
        with ZipArchive() as archive:
            with pytest.raises(ValueError):
                archive.save()

    def test_save_in_place_replaces_source(self, tmp_path, source_files, make_archive):
        target = make_archive(source_files[:3])
        with ZipArchive.read(target) as archive:
            archive.remove(source_files[0].name)
            archive.save(policy=Zip64Policy.AS_NECESSARY)
        with ZipArchive.read(target) as archive:
            assert len(archive) == 2
        assert not (tmp_path / "fixture.zip.tmp").exists()

    def test_corrupt_file_raises_bad_zip(self, tmp_path):
        bad = tmp_path / "bad.zip"
        bad.write_bytes(b"this is not an archive" * 10)
        with pytest.raises(zipfile.BadZipFile):
            ZipArchive.read(bad)


# =============================================================================
# SECTION 3 -- Mutation
# =============================================================================

class TestMutation:
    def test_duplicate_add_raises(self, source_files):
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            with pytest.raises(ValueError, match="already exists"):
                archive.add_file(source_files[0])

    def test_rename_keeps_content(self, tmp_path, source_files, make_archive):
        target = make_archive(source_files[:5])
        old = source_files[4].name
        with ZipArchive.read(target) as archive:
            archive.rename(old, old + ".renamed")
            archive.save(tmp_path / "b.zip", Zip64Policy.NEVER)
        with ZipArchive.read(tmp_path / "b.zip") as archive:
            assert old not in archive
            sink = io.BytesIO()
            archive.extract(old + ".renamed", sink)
            assert sink.getvalue() == source_files[4].read_bytes()

    def test_rename_onto_existing_name_raises(self, source_files):
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            archive.add_file(source_files[1])
            with pytest.raises(ValueError):
                archive.rename(source_files[0].name, source_files[1].name)

    def test_rename_unknown_raises_key_error(self, source_files):
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            with pytest.raises(KeyError):
                archive.rename("missing.bin", "other.bin")

    def test_remove_matching_is_case_sensitive(self, tmp_path):
        for name in ("a.txt", "b.TXT", "c.bin"):
            (tmp_path / name).write_bytes(b"x" * 10)
        with ZipArchive() as archive:
            for name in ("a.txt", "b.TXT", "c.bin"):
                archive.add_file(tmp_path / name)
            removed = archive.remove_matching("*.txt")
            assert removed == ["a.txt"]
            assert archive.entry_names == ["b.TXT", "c.bin"]

    def test_update_directory_adds_then_replaces(self, tmp_path, make_archive, source_files):
        target = make_archive(source_files[:2])
        folder = tmp_path / "newfolder-0"
        folder.mkdir()
        (folder / "newfile.txt").write_bytes(b"first")

        with ZipArchive.read(target) as archive:
            assert archive.update_directory(folder, "newfolder-0") == ["newfolder-0/newfile.txt"]
            archive.save(policy=Zip64Policy.ALWAYS)

        (folder / "newfile.txt").write_bytes(b"second version")
        with ZipArchive.read(target) as archive:
            archive.update_directory(folder, "newfolder-0")
            archive.save(policy=Zip64Policy.ALWAYS)

        with ZipArchive.read(target) as archive:
            assert len(archive) == 3
            sink = io.BytesIO()
            archive.extract("newfolder-0/newfile.txt", sink)
            assert sink.getvalue() == b"second version"

    def test_add_stream_writes_generated_content(self, tmp_path):
        payload = b"0123456789" * 100
        with ZipArchive() as archive:
            archive.add_stream("gen/Data0.bin", lambda: io.BytesIO(payload), len(payload))
            archive.save(tmp_path / "s.zip", Zip64Policy.AS_NECESSARY)
        with ZipArchive.read(tmp_path / "s.zip") as archive:
            info = archive.info("gen/Data0.bin")
            assert info.file_size == len(payload)
            path = archive.extract_to("gen/Data0.bin", tmp_path / "out")
            assert path == tmp_path / "out" / "gen" / "Data0.bin"
            assert path.read_bytes() == payload


# =============================================================================
# SECTION 4 -- Progress events
# =============================================================================

class TestProgressEvents:
    def test_save_event_sequence(self, tmp_path, source_files):
        recorder = _Recorder()
        with ZipArchive(buffer_size=512) as archive:
            for path in source_files[:3]:
                archive.add_file(path)
            with archive.observing(recorder):
                archive.save(tmp_path / "a.zip", Zip64Policy.ALWAYS)

        kinds = [e.kind for e in recorder.events]
        assert kinds[0] is ProgressEventKind.SAVE_STARTED
        assert kinds[-1] is ProgressEventKind.SAVE_COMPLETED
        assert kinds.count(ProgressEventKind.BEFORE_WRITE_ENTRY) == 3
        assert kinds.count(ProgressEventKind.AFTER_WRITE_ENTRY) == 3
        assert all(e.entries_total == 3 for e in recorder.events)

    def test_byte_counts_are_monotonic_per_entry(self, tmp_path, source_files):
        recorder = _Recorder()
        with ZipArchive(buffer_size=256) as archive:
            archive.add_file(source_files[0])
            with archive.observing(recorder):
                archive.save(tmp_path / "a.zip", Zip64Policy.NEVER)
        counts = [e.bytes_transferred for e in recorder.events
                  if e.kind is ProgressEventKind.ENTRY_BYTES_READ]
        assert counts == sorted(counts)
        assert counts[-1] == source_files[0].stat().st_size

    def test_extract_events(self, source_files, make_archive):
        target = make_archive(source_files[:2])
        recorder = _Recorder()
        with ZipArchive.read(target) as archive:
            with archive.observing(recorder):
                archive.extract(source_files[1].name, io.BytesIO())
        kinds = [e.kind for e in recorder.events]
        assert kinds[0] is ProgressEventKind.BEFORE_EXTRACT_ENTRY
        assert kinds[-1] is ProgressEventKind.AFTER_EXTRACT_ENTRY
        assert ProgressEventKind.ENTRY_BYTES_WRITTEN in kinds

    def test_observer_removed_after_block(self, tmp_path, source_files):
        recorder = _Recorder()
        with ZipArchive() as archive:
            archive.add_file(source_files[0])
            with archive.observing(recorder):
                pass
            archive.save(tmp_path / "a.zip", Zip64Policy.NEVER)
        assert recorder.events == []
