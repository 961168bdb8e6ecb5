import numpy as np

from ziptrials.verification.entry_factory import (
    EntryFactory,
    RandomBinaryStream,
    random_text,
)


# =============================================================================
# SECTION 1 -- Content generators
# =============================================================================

class TestContent:
    def test_random_text_exact_size_and_ascii(self):
        rng = np.random.default_rng(5)
        for size in (0, 1, 17, 5000):
            data = random_text(rng, size)
            assert len(data) == size
            data.decode("ascii")

    def test_stream_yields_exact_size(self):
        stream = RandomBinaryStream(seed=3, size=10_000)
        data = stream.read()
        assert len(data) == 10_000
        assert stream.read() == b""

    def test_stream_is_reproducible(self):
        assert RandomBinaryStream(9, 4096).read() == RandomBinaryStream(9, 4096).read()


# =============================================================================
# SECTION 2 -- EntryFactory
# =============================================================================

class TestEntryFactory:
    def test_same_seed_same_files(self, tmp_path):
        a = EntryFactory(np.random.default_rng(42), (100, 500)).create_files(tmp_path / "a", 6)
        b = EntryFactory(np.random.default_rng(42), (100, 500)).create_files(tmp_path / "b", 6)
        assert [p.name for p in a] == [p.name for p in b]
        assert [p.read_bytes() for p in a] == [p.read_bytes() for p in b]

    def test_names_and_sizes(self, tmp_path):
        factory = EntryFactory(np.random.default_rng(1), (100, 500))
        files = factory.create_files(tmp_path, 10)
        for i, path in enumerate(files):
            assert path.name in (f"Data{i}.bin", f"Data{i}.txt")
            assert 100 <= path.stat().st_size <= 500

    def test_entry_count_within_inclusive_range(self, factory):
        counts = {factory.entry_count((6, 13)) for _ in range(300)}
        assert min(counts) >= 6
        assert max(counts) <= 13
        assert 13 in counts

    def test_choice_picks_from_options(self, factory):
        picks = {factory.choice(("*.txt", "*.bin")) for _ in range(50)}
        assert picks == {"*.txt", "*.bin"}
