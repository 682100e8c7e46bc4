"""
tests/test_daily_stats.py
Daily stats aggregation — totals, top apps, chart sessions.
"""

from focussync.aggregators.daily_stats import build_top_apps, compute_daily_stats
from focussync.models.record import DailyStats, SessionRecord


def _rec(rid, app, start, dur, bundle=None, title="t"):
    return SessionRecord(
        id           = rid,
        user_id      = "u1",
        device_id    = "d1",
        app_name     = app,
        window_title = title,
        start_time   = start,
        end_time     = start + dur,
        duration     = dur,
        bundle_id    = bundle,
    )


class TestComputeDailyStats:

    def test_empty_day(self):
        stats = compute_daily_stats("2024-03-09", [])
        assert stats.date == "2024-03-09"
        assert stats.total_sessions == 0
        assert stats.top_apps == []
        assert stats.sessions == []
        assert stats.scores.overall == 0

    def test_totals_and_span(self):
        records = [
            _rec("b", "Browser", 2000, 500),
            _rec("a", "Editor", 0, 1000),
            _rec("c", "Editor", 1100, 600),
        ]
        stats = compute_daily_stats("2024-03-09", records)
        assert stats.total_duration == 2100
        assert stats.total_sessions == 3
        assert stats.total_apps == 2
        assert stats.active_span == 2500
        assert [s.id for s in stats.sessions] == ["a", "c", "b"]

    def test_top_apps_sorted_by_duration_then_name(self):
        records = [
            _rec("1", "Zed", 0, 100, bundle="dev.zed"),
            _rec("2", "Alpha", 200, 100),
            _rec("3", "Mail", 400, 300),
            _rec("4", "Zed", 800, 5, bundle="other"),
        ]
        apps = build_top_apps(records)
        assert [a.app_name for a in apps] == ["Mail", "Zed", "Alpha"]
        zed = apps[1]
        assert zed.total_duration == 105
        assert zed.session_count == 2
        assert zed.bundle_id == "dev.zed"

    def test_dict_shape_uses_camel_case(self):
        stats = compute_daily_stats("2024-03-09", [_rec("a", "Editor", 0, 3600)])
        d = stats.to_dict()
        assert set(d) == {
            "date", "totalDuration", "totalSessions", "totalApps",
            "activeSpan", "scores", "topApps", "sessions",
        }
        assert d["scores"]["deepWork"] == 40
        assert d["topApps"][0]["appName"] == "Editor"
        assert d["sessions"][0]["startTime"] == 0
        assert DailyStats.from_dict(d) == stats
