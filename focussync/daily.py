"""
focussync/daily.py
Read path — daily review, on-demand analysis and sync status.

FLOW (get_daily):
  timezone → validate date (past days only) → cache hit? return it
  → else fetch [local midnight, next local midnight) → aggregate
  → best-effort cache write-back → return fresh stats

The write-back is fire-and-forget: a failed cache write costs a
recomputation next time, never a failed request.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from focussync.aggregators.daily_stats import compute_daily_stats
from focussync.cache.daily_summary import DailySummaryCache
from focussync.errors import AnalysisUnavailableError, CacheWriteError, ValidationError
from focussync.llm.base import AnalysisAdapter
from focussync.models.record import DailyStats, DailySummary
from focussync.queue.sync_queue import SyncQueue
from focussync.settings import get_user_timezone
from focussync.storage.sqlite_store import SQLiteStore
from focussync.tasks import BestEffortRunner
from focussync.timezone import DATE_PATTERN, date_bounds_epoch, parse_iso_date, today_in_tz

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE = "Unknown device"


def validate_past_date(
    date: str,
    tz:   str,
    now:  Optional[datetime] = None,
) -> None:
    """Raise ValidationError unless `date` is a real YYYY-MM-DD before today in tz."""
    if not isinstance(date, str) or not DATE_PATTERN.match(date):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.")
    if parse_iso_date(date) is None:
        raise ValidationError("Invalid date.")
    if date >= today_in_tz(tz, now):
        raise ValidationError(
            "Cannot view today or future dates. Data is still being collected."
        )


class DailyReviewService:
    """
    Usage:
        service = DailyReviewService(store, cache, runner)
        payload = service.get_daily("u1", "2024-03-09")
        payload["stats"]["scores"]["overall"]
    """

    def __init__(
        self,
        store:            SQLiteStore,
        cache:            DailySummaryCache,
        runner:           BestEffortRunner,
        analyzer:         Optional[AnalysisAdapter]        = None,
        queue:            Optional[SyncQueue]              = None,
        default_timezone: str                              = 'UTC',
        clock:            Callable[[], datetime]           = lambda: datetime.now(timezone.utc),
    ):
        self.store            = store
        self.cache            = cache
        self.runner           = runner
        self.analyzer         = analyzer
        self.queue            = queue
        self.default_timezone = default_timezone
        self.clock            = clock

    # ── DAILY STATS ───────────────────────────────────────────

    def user_timezone(self, user_id: str) -> str:
        return get_user_timezone(self.store, user_id, self.default_timezone)

    def _stats_for(self, user_id: str, date: str, tz: str) -> Tuple[DailyStats, Optional[DailySummary]]:
        cached = self.cache.find(user_id, date)
        if cached is not None and cached.stats is not None:
            logger.debug(f"Daily cache hit for {date}")
            return cached.stats, cached

        start, end = date_bounds_epoch(date, tz)
        records = self.store.fetch_sessions_between(user_id, start, end)
        stats = compute_daily_stats(date, records)
        self.runner.spawn(f"cache stats {date}", self._write_back, user_id, date, stats)
        return stats, cached

    def _write_back(self, user_id: str, date: str, stats: DailyStats) -> None:
        try:
            self.cache.put_stats(user_id, date, stats)
        except CacheWriteError as exc:
            logger.warning(f"Daily cache write-back skipped: {exc}")

    def get_daily(self, user_id: str, date: str) -> Dict[str, Any]:
        """
        Stats + cached analysis for one past day.

        Raises:
            ValidationError: bad format, impossible date, or not before today.
        """
        tz = self.user_timezone(user_id)
        validate_past_date(date, tz, self.clock())
        stats, summary = self._stats_for(user_id, date, tz)
        return {
            "stats":    stats.to_dict(),
            "ai":       summary.ai_dict() if summary is not None else None,
            "timezone": tz,
        }

    # ── ANALYSIS ──────────────────────────────────────────────

    def analyze_day(self, user_id: str, date: str, force: bool = False) -> Dict[str, Any]:
        """
        Return the day's analysis, generating it when absent (or when forced).

        Raises:
            ValidationError:          bad or non-past date
            AnalysisUnavailableError: no backend, or it produced nothing usable
        """
        tz = self.user_timezone(user_id)
        validate_past_date(date, tz, self.clock())
        stats, summary = self._stats_for(user_id, date, tz)

        if not force and summary is not None and summary.ai_result is not None:
            return {**summary.ai_dict(), "cached": True}

        if self.analyzer is None:
            raise AnalysisUnavailableError("No analysis backend configured")
        if not self.analyzer.is_available():
            raise AnalysisUnavailableError("Analysis backend is not reachable")

        result = self.analyzer.analyze(date, stats)
        if result is None:
            raise AnalysisUnavailableError("Analysis backend returned no usable result")

        generated_at = self.clock().isoformat()
        try:
            self.cache.put_analysis(user_id, date, result, generated_at=generated_at)
        except CacheWriteError as exc:
            logger.warning(f"Analysis not cached: {exc}")

        logger.info(f"Analysis for {date} generated (model={result.model}, score={result.score})")
        return {
            "score":       result.score,
            "result":      result.to_dict(),
            "model":       result.model,
            "generatedAt": generated_at,
            "cached":      False,
        }

    # ── SYNC STATUS ───────────────────────────────────────────

    def sync_status(self, user_id: str) -> Dict[str, Any]:
        devices = [
            {
                "deviceId":     row["device_id"],
                "name":         row["name"] or UNKNOWN_DEVICE,
                "lastSync":     row["synced_at"],
                "sessionCount": row["session_count"],
            }
            for row in self.store.latest_sync_per_device(user_id)
        ]
        return {
            "devices": devices,
            "queue":   self.queue.stats().to_dict() if self.queue is not None else None,
        }
