"""
focussync/aggregators/daily_stats.py
Daily stats aggregation — one user, one calendar day.

Pure function of its inputs (no I/O), so the result for a past date can
be cached: once a day is over its sessions no longer change.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from focussync.aggregators.score_calculator import active_span, compute_scores
from focussync.aggregators.segment_merger import merge_adjacent_sessions, sort_by_start
from focussync.models.record import AppSummary, DailyStats, SessionForChart, SessionRecord

logger = logging.getLogger(__name__)


def build_top_apps(ordered: List[SessionRecord]) -> List[AppSummary]:
    """Per-app totals, longest first. Bundle id comes from the app's first session."""
    apps: Dict[str, AppSummary] = {}
    for r in ordered:
        app = apps.get(r.app_name)
        if app is None:
            apps[r.app_name] = AppSummary(
                app_name       = r.app_name,
                bundle_id      = r.bundle_id,
                total_duration = r.duration,
                session_count  = 1,
            )
        else:
            app.total_duration += r.duration
            app.session_count += 1
    return sorted(apps.values(), key=lambda a: (-a.total_duration, a.app_name))


def compute_daily_stats(date: str, records: Iterable[SessionRecord]) -> DailyStats:
    """
    Build the full daily-stats structure for one date.

    Args:
        date:    YYYY-MM-DD in the user's timezone (echoed back as-is).
        records: That day's sessions, any order.

    Returns:
        DailyStats with totals, scores, top apps and chart-ready sessions.
    """
    ordered = sort_by_start(records)
    if not ordered:
        return DailyStats(date=date)

    segments = merge_adjacent_sessions(ordered)

    stats = DailyStats(
        date           = date,
        total_duration = sum(r.duration for r in ordered),
        total_sessions = len(ordered),
        total_apps     = len({r.app_name for r in ordered}),
        active_span    = active_span(ordered),
        scores         = compute_scores(ordered, segments),
        top_apps       = build_top_apps(ordered),
        sessions       = [
            SessionForChart(
                id           = r.id,
                app_name     = r.app_name,
                bundle_id    = r.bundle_id,
                window_title = r.window_title,
                url          = r.url,
                start_time   = r.start_time,
                duration     = r.duration,
            )
            for r in ordered
        ],
    )
    logger.debug(
        f"Daily stats {date}: sessions={stats.total_sessions} "
        f"segments={len(segments)} overall={stats.scores.overall}"
    )
    return stats
