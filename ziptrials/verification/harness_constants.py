# ziptrials/verification/harness_constants.py
# Tunables of the trial matrix. Ranges are inclusive.

# Entries per "create" trial.
CREATE_ENTRY_RANGE = (13, 17)

# Entries per "convert" / "update" trial. Must leave an entry at RENAME_INDEX.
CONVERT_ENTRY_RANGE = (6, 13)

# Bytes per generated entry.
ENTRY_SIZE_RANGE = (5000, 48999)

# Entry renamed by a mutating update, and the suffix it receives.
RENAME_INDEX: int = 4
RENAME_SUFFIX: str = ".renamed"

# Extension classes one of which a mutating update removes.
REMOVABLE_PATTERNS = ("*.txt", "*.bin")

# Transfer buffer for huge-archive passes: 65536 * 8 = 512 KiB.
LARGE_BUFFER_SIZE: int = 65536 * 8

# A huge archive must be strictly larger than the 32-bit unsigned maximum.
SIZE_BOUNDARY: int = 0xFFFFFFFF

# Update passes applied to the huge archive.
HUGE_UPDATE_PASSES: int = 2

# Size of the file added by each huge-archive update pass.
HUGE_UPDATE_BASE_SIZE = (80000, 80000 + 0x1000FF)
HUGE_UPDATE_JITTER: int = 28000

# An external listing scan may visit at most this multiple of the expected
# entry count before it is treated as runaway.
SCAN_CAP_MULTIPLIER: int = 3

# Default channel name for a harness run.
DEFAULT_CHANNEL: str = "ziptrials"
