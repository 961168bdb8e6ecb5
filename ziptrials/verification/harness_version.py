# ziptrials/verification/harness_version.py
# Harness version constants. Single authoritative definition.
# Referenced by run_harness.py, record_serializer.py and failure_handler.py
# for version stamping.

HARNESS_VERSION: str = "1.0.0"

# Storage format version for trial, pass and failure records.
STORAGE_FORMAT_VERSION: str = "1.0.0"
