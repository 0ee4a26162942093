"""
Error taxonomy for the sync engine.

ValidationError, NotFoundError and SyncInProgressError reach the caller (the
API maps them to 400/404/409). TransientExternalError ends up in a log's
error_details. Failures of non-critical writes are logged as PersistenceError
and never abort the surrounding operation.
"""


class SyncError(RuntimeError):
    """Base class for all sync engine errors."""


class ValidationError(SyncError, ValueError):
    """Raised for malformed input (cron expression, configuration id, sync type)."""


class NotFoundError(SyncError, LookupError):
    """Raised when an operation targets a configuration that does not exist."""


class TransientExternalError(SyncError):
    """Raised when the scraper service is unreachable or unhealthy."""


class PersistenceError(SyncError):
    """Raised when a store write fails."""


class SyncInProgressError(SyncError):
    """Raised when a run is requested for a configuration that is already syncing."""


class InternalError(SyncError):
    """Unexpected failure inside a public operation."""
