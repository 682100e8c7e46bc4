"""
tests/test_daily_summary_cache.py
Daily summary cache — independent stats and analysis writes.
"""

import pytest

from focussync.cache.daily_summary import DailySummaryCache
from focussync.errors import CacheWriteError, StorageTransientError
from focussync.models.record import AnalysisResult, DailyScores, DailyStats
from focussync.storage.sqlite_store import SQLiteStore


def _make_cache(tmp_path):
    store = SQLiteStore(tmp_path / "focussync.db")
    store.init_schema()
    return DailySummaryCache(store), store


def _stats(total: float = 100.0, overall: int = 50) -> DailyStats:
    return DailyStats(
        date           = "2024-03-09",
        total_duration = total,
        total_sessions = 1,
        total_apps     = 1,
        active_span    = total,
        scores         = DailyScores(overall=overall),
    )


def _analysis(score: int = 70, model: str = "llama3.1:8b") -> AnalysisResult:
    return AnalysisResult(
        score        = score,
        highlights   = ["long focus block"],
        improvements = ["fewer switches"],
        summary      = "Solid day.",
        model        = model,
    )


class TestDailySummaryCache:

    def test_find_missing_returns_none(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        assert cache.find("u1", "2024-03-09") is None

    def test_put_stats_then_find(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        cache.put_stats("u1", "2024-03-09", _stats())
        hit = cache.find("u1", "2024-03-09")
        assert hit.stats == _stats()
        assert hit.ai_result is None
        assert hit.ai_dict() is None

    def test_put_stats_never_overwrites(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        cache.put_stats("u1", "2024-03-09", _stats(total=100))
        cache.put_stats("u1", "2024-03-09", _stats(total=999))
        assert cache.find("u1", "2024-03-09").stats.total_duration == 100

    def test_put_stats_fills_row_created_by_analysis(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        cache.put_analysis("u1", "2024-03-09", _analysis())
        assert cache.find("u1", "2024-03-09").stats is None

        cache.put_stats("u1", "2024-03-09", _stats())
        hit = cache.find("u1", "2024-03-09")
        assert hit.stats == _stats()
        assert hit.ai_score == 70

    def test_put_analysis_upserts_without_touching_stats(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        cache.put_stats("u1", "2024-03-09", _stats())
        cache.put_analysis("u1", "2024-03-09", _analysis(score=60), generated_at="t1")
        cache.put_analysis("u1", "2024-03-09", _analysis(score=80, model="m2"), generated_at="t2")

        hit = cache.find("u1", "2024-03-09")
        assert hit.stats == _stats()
        assert hit.ai_dict() == {
            "score":       80,
            "result":      _analysis(score=80).to_dict(),
            "model":       "m2",
            "generatedAt": "t2",
        }

    def test_entries_are_per_user(self, tmp_path):
        cache, _ = _make_cache(tmp_path)
        cache.put_stats("u1", "2024-03-09", _stats())
        assert cache.find("u2", "2024-03-09") is None

    def test_storage_failure_becomes_cache_write_error(self, tmp_path):
        cache, store = _make_cache(tmp_path)

        def fail(*args, **kwargs):
            raise StorageTransientError("locked")

        store.execute = fail
        with pytest.raises(CacheWriteError):
            cache.put_stats("u1", "2024-03-09", _stats())
        with pytest.raises(CacheWriteError):
            cache.put_analysis("u1", "2024-03-09", _analysis())
