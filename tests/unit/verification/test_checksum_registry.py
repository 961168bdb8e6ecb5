import hashlib
import io

import pytest

from ziptrials.verification.checksum_registry import ChecksumRegistry, compute_checksum


# =============================================================================
# SECTION 1 -- compute_checksum()
# =============================================================================

class TestComputeChecksum:
    def test_path_and_stream_agree(self, tmp_path):
        payload = bytes(range(256)) * 700
        path = tmp_path / "a.bin"
        path.write_bytes(payload)
        expected = (hashlib.sha256(payload).hexdigest(), len(payload))
        assert compute_checksum(path) == expected
        assert compute_checksum(str(path)) == expected
        assert compute_checksum(io.BytesIO(payload)) == expected

    def test_empty_source(self):
        digest, size = compute_checksum(io.BytesIO(b""))
        assert size == 0
        assert digest == hashlib.sha256(b"").hexdigest()


# =============================================================================
# SECTION 2 -- record / verify
# =============================================================================

class TestChecksumRegistry:
    def test_verify_matching_content(self, tmp_path):
        src = tmp_path / "Data0.txt"
        src.write_bytes(b"some text\n")
        copy = tmp_path / "copy.txt"
        copy.write_bytes(b"some text\n")

        registry = ChecksumRegistry()
        registry.record("Data0.txt", src)
        assert registry.verify("Data0.txt", copy) is True
        assert registry.report().passed
        assert registry.report().verified == 1

    def test_single_flipped_byte_detected(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"\x00" * 1000)
        registry = ChecksumRegistry()
        registry.record("a.bin", src)

        assert registry.verify("a.bin", io.BytesIO(b"\x00" * 999 + b"\x01")) is False
        mismatch = registry.mismatches[0]
        assert mismatch.name == "a.bin"
        assert mismatch.expected == registry.get("a.bin").digest
        assert not registry.report().passed

    def test_missing_checksum_is_a_mismatch(self):
        registry = ChecksumRegistry()
        assert registry.verify("never-recorded.bin", io.BytesIO(b"x")) is False
        assert registry.mismatches[0].expected == "(missing)"

    def test_duplicate_name_raises_collision(self, tmp_path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"1")
        registry = ChecksumRegistry()
        registry.record("a.bin", src)
        with pytest.raises(RuntimeError, match="^NAME_COLLISION:"):
            registry.record("a.bin", src)

    def test_rename_resolves_to_original(self, tmp_path):
        src = tmp_path / "Data4.bin"
        src.write_bytes(b"payload")
        registry = ChecksumRegistry()
        registry.record("Data4.bin", src)
        registry.track_rename("Data4.bin", "Data4.bin.renamed")

        assert "Data4.bin.renamed" in registry
        assert registry.original_name("Data4.bin.renamed") == "Data4.bin"
        assert registry.verify("Data4.bin.renamed", io.BytesIO(b"payload")) is True

    def test_rename_of_unknown_raises(self):
        with pytest.raises(KeyError):
            ChecksumRegistry().track_rename("nope", "nope.renamed")

    def test_names_and_len(self, tmp_path):
        registry = ChecksumRegistry()
        for i in range(3):
            p = tmp_path / f"Data{i}.bin"
            p.write_bytes(bytes([i]))
            registry.record(p.name, p)
        assert len(registry) == 3
        assert registry.names == ["Data0.bin", "Data1.bin", "Data2.bin"]
