"""
Error taxonomy for identity resolution, reputation and batch sync.

Single-record calls raise these to their caller. Batch jobs catch them per
row, record a message and keep going.
"""


class ReliabilityNetError(Exception):
    """Base class for all errors raised by this package."""
    pass


class NoIdentifiableContact(ReliabilityNetError):
    """No usable phone, email or address to hash. Skip the record, do not retry."""
    pass


class DuplicateKeyConflict(ReliabilityNetError):
    """A unique hash/link key is already held by another row.

    Resolved internally by re-reading the winning row; never leaves the
    resolver or the batch jobs.
    """

    def __init__(self, column: str, message: str = ""):
        self.column = column
        super().__init__(message or f"Duplicate value for unique column '{column}'")


class StoreUnavailable(ReliabilityNetError):
    """The backing store could not complete the operation."""
    pass


class MalformedAddress(ReliabilityNetError):
    """Address text could not be parsed at all (empty after cleanup)."""
    pass


class RecordNotFound(ReliabilityNetError):
    """A customer, identity or property record does not exist (or is not visible)."""
    pass


class InvalidEvent(ReliabilityNetError):
    """Event data failed validation, e.g. severity outside 1..5."""
    pass
