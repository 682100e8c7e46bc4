"""
focussync/errors.py
Exception taxonomy shared by the gateway, drain worker, cache and HTTP layer.

  ValidationError        → 400, caller fixes the request; never retried
  CapacityError          → 413, caller splits the batch and resubmits
  QueueFullError         → 503, caller retries later
  StorageTransientError  → retried by the drain worker only
  CacheWriteError        → always swallowed by the best-effort runner
  AnalysisUnavailableError → 503
  NotFoundError          → 404

Duplicates are not errors — the idempotent write only counts them.
"""


class FocusSyncError(Exception):
    """Base class for all focussync errors."""


class ValidationError(FocusSyncError, ValueError):
    """Malformed batch or body, bad date, or a date that is not in the past."""

    status_code = 400


class CapacityError(ValidationError):
    """Batch exceeds the maximum size."""

    status_code = 413


class QueueFullError(FocusSyncError):
    """The in-memory sync queue is at its configured bound."""

    status_code = 503


class StorageTransientError(FocusSyncError):
    """A storage write failed or timed out; safe to retry (writes are id-keyed)."""


class CacheWriteError(FocusSyncError):
    """Writing a daily summary failed."""


class AnalysisUnavailableError(FocusSyncError):
    """No analysis backend reachable, or it returned an unusable response."""

    status_code = 503


class NotFoundError(FocusSyncError):
    """The addressed resource does not exist for this user."""

    status_code = 404
