import zipfile

import pytest

from ziptrials.engine import ZipArchive, Zip64Inspector
from ziptrials.verification.huge_archive import build_huge_archive


# =============================================================================
# SECTION 1 -- build_huge_archive() with a lowered floor
# =============================================================================

class TestBuildHugeArchive:
    def test_exceeds_requested_floor(self, tmp_path):
        target = build_huge_archive(tmp_path / "h.zip", min_size=20_000, entry_size=8192)
        assert target.stat().st_size > 20_000

    def test_entries_are_stored_and_zip64(self, tmp_path):
        target = build_huge_archive(tmp_path / "h.zip", min_size=10_000, entry_size=4096)
        with ZipArchive.read(target) as archive:
            assert archive.entry_names == ["huge/Data0.bin", "huge/Data1.bin", "huge/Data2.bin"]
            assert all(info.file_size == 4096 for info in archive)
        with zipfile.ZipFile(target) as zf:
            assert all(zi.compress_type == zipfile.ZIP_STORED for zi in zf.infolist())
        assert Zip64Inspector(target).uses_zip64()

    def test_same_seed_same_bytes(self, tmp_path):
        a = build_huge_archive(tmp_path / "a.zip", min_size=5000, entry_size=2048, seed=11)
        b = build_huge_archive(tmp_path / "b.zip", min_size=5000, entry_size=2048, seed=11)
        with zipfile.ZipFile(a) as za, zipfile.ZipFile(b) as zb:
            assert [za.read(n) for n in za.namelist()] == [zb.read(n) for n in zb.namelist()]

    def test_invalid_entry_size(self, tmp_path):
        with pytest.raises(ValueError):
            build_huge_archive(tmp_path / "h.zip", min_size=10, entry_size=0)
