"""Error taxonomy for ingestion and statistics.

Duplicates and unknown actors are expected outcomes of ``LedgerStore.record``
and are reported through ``RecordOutcome``; only the conditions below raise.
"""

from typing import Optional


class AppError(Exception):
    code = "app_error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class StorageFailure(AppError):
    """Persistence failed for a reason other than a duplicate key."""
    code = "storage_failure"


class SourceFailure(AppError):
    """The event or membership source was unreachable or returned garbage."""
    code = "source_failure"


class ConfigurationError(AppError, ValueError):
    code = "configuration_error"


class NotFoundError(AppError, LookupError):
    code = "not_found"
