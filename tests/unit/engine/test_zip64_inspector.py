import zipfile

import pytest

from ziptrials.engine import Zip64Inspector, Zip64Policy


# =============================================================================
# SECTION 1 -- Marker detection
# =============================================================================

class TestZip64Inspector:
    def test_always_marks_every_local_header(self, source_files, make_archive):
        target = make_archive(source_files, policy=Zip64Policy.ALWAYS)
        markers = Zip64Inspector(target).inspect()
        assert markers.entries == len(source_files)
        assert markers.local_extras == len(source_files)
        assert markers.present

    def test_never_has_no_markers(self, source_files, make_archive):
        target = make_archive(source_files, policy=Zip64Policy.NEVER)
        markers = Zip64Inspector(target).inspect()
        assert not markers.present
        assert markers.end_record is False
        assert markers.central_extras == 0
        assert markers.local_extras == 0

    def test_uses_zip64_matches_inspect(self, source_files, make_archive):
        always = make_archive(source_files, "a.zip", Zip64Policy.ALWAYS)
        never = make_archive(source_files, "n.zip", Zip64Policy.NEVER)
        assert Zip64Inspector(always).uses_zip64() is True
        assert Zip64Inspector(never).uses_zip64() is False

    def test_plain_zipfile_archive(self, tmp_path):
        target = tmp_path / "plain.zip"
        with zipfile.ZipFile(target, "w") as zf:
            zf.writestr("a.txt", b"hello")
        assert Zip64Inspector(target).uses_zip64() is False

    def test_not_an_archive_raises(self, tmp_path):
        bad = tmp_path / "bad.zip"
        bad.write_bytes(b"\x00" * 64)
        with pytest.raises(zipfile.BadZipFile):
            Zip64Inspector(bad).inspect()
