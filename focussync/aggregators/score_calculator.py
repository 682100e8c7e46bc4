"""
focussync/aggregators/score_calculator.py
Rule-based productivity scores for one day of sessions.

NOTE ON DIMENSIONS (all integers in [0, 100]):
  focus         = total active duration / active span
  deepWork      = merged segments >= 30 min, mapped through DEEP_WORK_MAP
  switchRate    = app switches per active hour, banded via SWITCH_RATE_BANDS
  concentration = share of total duration spent in the top 3 apps
  overall       = WEIGHTS-weighted sum of the four

Rounding is half-up so x.5 always rounds away from zero, the same way the
dashboard computes its previews.
"""

from __future__ import annotations

import math
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from focussync.aggregators.segment_merger import merge_adjacent_sessions, sort_by_start
from focussync.models.record import DailyScores, MergedSegment, SessionRecord

DEEP_WORK_THRESHOLD = 1800   # seconds

DEEP_WORK_MAP = {0: 0, 1: 40, 2: 60, 3: 75, 4: 85}
DEEP_WORK_SATURATED = 100    # five or more deep segments

# (max switches per hour, score); first band that fits wins
SWITCH_RATE_BANDS = (
    (4,  100),
    (8,  80),
    (15, 60),
    (25, 40),
)
SWITCH_RATE_FLOOR = 20

# Weights in tenths (0.3 / 0.3 / 0.2 / 0.2) so the weighted sum stays exact
WEIGHTS = {
    'focus':         3,
    'deep_work':     3,
    'switch_rate':   2,
    'concentration': 2,
}


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _clamp(score: int) -> int:
    return max(0, min(100, score))


def active_span(records: List[SessionRecord]) -> float:
    """Latest end minus earliest start; 0 for no records."""
    if not records:
        return 0
    first_start = min(r.start_time for r in records)
    last_end = max(r.start_time + r.duration for r in records)
    return last_end - first_start


def focus_score(total_duration: float, span: float) -> int:
    if span <= 0:
        return 0
    return _clamp(min(100, round_half_up(total_duration / span * 100)))


def deep_work_score(segments: List[MergedSegment]) -> int:
    deep = sum(1 for s in segments if s.total_duration >= DEEP_WORK_THRESHOLD)
    if deep >= 5:
        return DEEP_WORK_SATURATED
    return DEEP_WORK_MAP.get(deep, 0)


def count_switches(ordered: List[SessionRecord]) -> int:
    """App-name changes between neighbours; input must already be sorted."""
    return sum(
        1 for prev, cur in zip(ordered, ordered[1:])
        if cur.app_name != prev.app_name
    )


def switch_rate_score(switches: int, span: float) -> int:
    hours = span / 3600
    per_hour = switches / hours if hours > 0 else 0
    for limit, score in SWITCH_RATE_BANDS:
        if per_hour <= limit:
            return score
    return SWITCH_RATE_FLOOR


def per_app_durations(records: Iterable[SessionRecord]) -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)
    for r in records:
        totals[r.app_name] += r.duration
    return dict(totals)


def concentration_score(app_totals: Dict[str, float], total_duration: float) -> int:
    if total_duration <= 0:
        return 0
    top3 = sum(sorted(app_totals.values(), reverse=True)[:3])
    return _clamp(round_half_up(top3 / total_duration * 100))


def compute_scores(
    records:  Iterable[SessionRecord],
    segments: Optional[List[MergedSegment]] = None,
) -> DailyScores:
    """
    Compute the four dimensions + weighted overall for one day.

    Args:
        records:  The day's sessions, any order.
        segments: Merged segments when the caller already has them;
                  merged here otherwise.
    """
    ordered = sort_by_start(records)
    if not ordered:
        return DailyScores()

    total = sum(r.duration for r in ordered)
    span = active_span(ordered)
    if segments is None:
        segments = merge_adjacent_sessions(ordered)

    focus         = focus_score(total, span)
    deep_work     = deep_work_score(segments)
    switch_rate   = switch_rate_score(count_switches(ordered), span)
    concentration = concentration_score(per_app_durations(ordered), total)

    overall = _clamp(round_half_up((
        focus         * WEIGHTS['focus'] +
        deep_work     * WEIGHTS['deep_work'] +
        switch_rate   * WEIGHTS['switch_rate'] +
        concentration * WEIGHTS['concentration']
    ) / 10))

    return DailyScores(
        focus         = focus,
        deep_work     = deep_work,
        switch_rate   = switch_rate,
        concentration = concentration,
        overall       = overall,
    )
