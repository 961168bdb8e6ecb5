# ziptrials/verification/data_models/checksum_record.py
# ChecksumRecord, ChecksumMismatch and VerificationReport data classes.

from dataclasses import dataclass


@dataclass(frozen=True)
class ChecksumRecord:
    """
    Digest of one entry's content at creation time.

    Fields:
      name   -- Entry relative name. Unique and case-sensitive within a trial.
      digest -- Lowercase hex SHA-256 of the full content.
      size   -- Content length in bytes.
    """
    name:   str
    digest: str
    size:   int


@dataclass(frozen=True)
class ChecksumMismatch:
    """
    One failed verification.

    expected is "(missing)" when no checksum was recorded for the name.
    """
    name:     str
    expected: str
    actual:   str


@dataclass(frozen=True)
class VerificationReport:
    """
    Outcome of all verify() calls against one registry.

    Fields:
      passed     -- True iff every verification matched.
      verified   -- Number of verify() calls.
      mismatches -- tuple of ChecksumMismatch, immutable.
    """
    passed:     bool
    verified:   int
    mismatches: tuple
