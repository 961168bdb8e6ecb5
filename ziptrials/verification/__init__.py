# ziptrials/verification/__init__.py
# ZIP64 Trial Matrix Harness.
# Harness Version: 1.0.0
#
# Drives the archive engine through every combination of ZIP64 policies for
# create, convert and update operations and asserts byte-exact round trips.
#
# ENTRY POINT:
#   python -m ziptrials.verification.run_harness --runs-dir [path]

from .harness_version import (
    HARNESS_VERSION,
    STORAGE_FORMAT_VERSION,
)
from .checksum_registry import ChecksumRegistry, compute_checksum
from .entry_factory import EntryFactory, RandomBinaryStream
from .external_listing import ExternalListingCheck, scan_entry_listing
from .failure_handler import FailureHandler
from .huge_archive import build_huge_archive
from .large_archive_verifier import DiscardingSink, LargeArchiveVerifier
from .trial_matrix import TrialMatrixGenerator
from .trial_runner import TrialMatrixRunner

__all__ = [
    # Version constants
    "HARNESS_VERSION",
    "STORAGE_FORMAT_VERSION",
    # Trial components
    "ChecksumRegistry",
    "compute_checksum",
    "EntryFactory",
    "RandomBinaryStream",
    "ExternalListingCheck",
    "scan_entry_listing",
    "FailureHandler",
    "build_huge_archive",
    "DiscardingSink",
    "LargeArchiveVerifier",
    "TrialMatrixGenerator",
    "TrialMatrixRunner",
]
