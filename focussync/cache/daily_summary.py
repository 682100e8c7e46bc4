"""
focussync/cache/daily_summary.py
Per-(user, date) cache of aggregated stats and analysis results.

Stats and analysis are written independently:
  put_stats     — create-if-absent. Fills stats on a row an analysis write
                  created first; never replaces stats that are already there.
  put_analysis  — upsert of the analysis columns only.

Only past dates are cached (the read path enforces that), so cached stats
never go stale.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from focussync.errors import CacheWriteError, StorageTransientError
from focussync.models.record import AnalysisResult, DailyStats, DailySummary
from focussync.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DailySummaryCache:

    def __init__(self, store: SQLiteStore):
        self.store = store

    def find(self, user_id: str, date: str) -> Optional[DailySummary]:
        rows = self.store.query(
            "SELECT * FROM daily_summaries WHERE user_id = ? AND date = ?",
            (user_id, date),
        )
        if not rows:
            return None
        row = rows[0]

        stats = None
        if row["stats_json"]:
            try:
                stats = DailyStats.from_dict(json.loads(row["stats_json"]))
            except (json.JSONDecodeError, KeyError, TypeError) as exc:
                logger.warning(f"Discarding unreadable cached stats for {date}: {exc}")

        ai_result = None
        if row["ai_result_json"]:
            try:
                ai_result = json.loads(row["ai_result_json"])
            except json.JSONDecodeError:
                logger.warning(f"Discarding unreadable cached analysis for {date}")

        return DailySummary(
            user_id         = row["user_id"],
            date            = row["date"],
            stats           = stats,
            ai_score        = row["ai_score"],
            ai_result       = ai_result,
            ai_model        = row["ai_model"],
            ai_generated_at = row["ai_generated_at"],
        )

    def put_stats(self, user_id: str, date: str, stats: DailyStats) -> None:
        """Cache stats unless some are already stored. Raises CacheWriteError."""
        now = _now_iso()
        try:
            self.store.execute(
                """
                INSERT INTO daily_summaries
                    (user_id, date, stats_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    stats_json = excluded.stats_json,
                    updated_at = excluded.updated_at
                WHERE daily_summaries.stats_json IS NULL
                """,
                (user_id, date, json.dumps(stats.to_dict()), now, now),
            )
        except StorageTransientError as exc:
            raise CacheWriteError(f"stats write for {date} failed: {exc}") from exc
        logger.debug(f"Cached stats for {date}")

    def put_analysis(
        self,
        user_id:      str,
        date:         str,
        result:       AnalysisResult,
        generated_at: Optional[str] = None,
    ) -> None:
        now = _now_iso()
        generated_at = generated_at or now
        try:
            self.store.execute(
                """
                INSERT INTO daily_summaries
                    (user_id, date, ai_score, ai_result_json, ai_model,
                     ai_generated_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, date) DO UPDATE SET
                    ai_score        = excluded.ai_score,
                    ai_result_json  = excluded.ai_result_json,
                    ai_model        = excluded.ai_model,
                    ai_generated_at = excluded.ai_generated_at,
                    updated_at      = excluded.updated_at
                """,
                (
                    user_id, date, result.score, json.dumps(result.to_dict()),
                    result.model, generated_at, now, now,
                ),
            )
        except StorageTransientError as exc:
            raise CacheWriteError(f"analysis write for {date} failed: {exc}") from exc
        logger.debug(f"Cached analysis for {date} (model={result.model})")
