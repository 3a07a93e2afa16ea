"""
Exception types raised by the cleaning core.

Per-record and per-partition errors are caught by the batch drivers and
reported as a status; GazetteerLoadFailure is fatal at construction.
"""


class CoordCleanError(Exception):
    """Base class for all coordinate cleaning errors."""


class InvalidRecord(CoordCleanError):
    """A record has a missing or out-of-range coordinate or country code."""

    def __init__(self, record_id, reason):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"record {record_id!r}: {reason}")


class InsufficientData(CoordCleanError):
    """Too few records for a statistical test to be meaningful."""

    def __init__(self, reason, n=None):
        self.reason = reason
        self.n = n
        super().__init__(reason if n is None else f"{reason} (n={n})")


class GazetteerLoadFailure(CoordCleanError):
    """Reference geometry is malformed or missing."""
