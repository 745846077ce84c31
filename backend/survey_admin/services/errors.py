"""
Error taxonomy for survey reconciliation.

Every error carries a stable `code` used by the API error envelope; the HTTP
status mapping lives in main.py so services stay transport-agnostic.
"""


class ReconciliationError(Exception):
    """Base class for errors surfaced to admin callers."""

    code = "RECONCILIATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(ReconciliationError):
    """Malformed input (e.g. negative daysOld, unknown status action). Raised before any query runs."""

    code = "VALIDATION_ERROR"


class TransientStoreError(ReconciliationError):
    """Store unavailable, or a transaction aborted / ran past its budget."""

    code = "STORE_UNAVAILABLE"


class ConflictError(ReconciliationError):
    """A reconciliation run already holds the lock."""

    code = "CONFLICT"


class NotFound(ReconciliationError):
    """Single-entity operation referenced a survey that does not exist."""

    code = "NOT_FOUND"
