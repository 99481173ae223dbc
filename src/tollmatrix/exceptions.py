"""
Exception hierarchy for tollmatrix.

Expected data-quality problems (unmatched labels, invalid coordinates,
non-positive amounts) are reported in structured results and never raised.
These exceptions cover malformed input and storage conflicts only.
"""


class TollMatrixError(Exception):
    """Base class for all tollmatrix errors."""


class InvalidInputError(TollMatrixError, ValueError):
    """Raised when a caller passes a malformed region, label set or identifier."""


class StoreConflictError(TollMatrixError):
    """Raised when the store rejects a write because of a uniqueness violation."""

    def __init__(self, message: str, key: object = None):
        super().__init__(message)
        self.key = key


class SchemaVersionError(TollMatrixError):
    """Raised when a database was written by a newer schema than this code knows."""
