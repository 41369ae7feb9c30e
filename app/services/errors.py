"""Scan pipeline errors.

Unit-level failures (provider, persistence) are recorded and never abort
sibling units; job-level errors surface to the trigger caller.
"""


class ScanError(Exception):
    """Base class for scan pipeline errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ScanError):
    """Trigger rejected before any job exists: unknown tenant, no usable providers, bad payload."""


class NotFound(ScanError):
    pass


class InvalidState(ScanError):
    """The job's status does not allow the requested operation (e.g. resuming a completed job)."""


class ConcurrencyConflict(ScanError):
    """An optimistic update lost the race. Reported as ``accepted: false``, safe to retry later."""


class PersistenceError(ScanError):
    """A run could not be written even after one retry."""
