"""
focussync/aggregators/segment_merger.py
Merge adjacent same-app sessions into work segments.

A record extends the running segment when it belongs to the same app and
starts less than MERGE_GAP_THRESHOLD seconds after the segment's end.
Overlapping records are tolerated: the segment end only ever grows.
Sorting is internal, so the result depends only on the set of records.
"""

from __future__ import annotations

from typing import Iterable, List

from focussync.models.record import MergedSegment, SessionRecord

MERGE_GAP_THRESHOLD = 300   # seconds


def sort_by_start(records: Iterable[SessionRecord]) -> List[SessionRecord]:
    """Ascending by start_time; id breaks ties so equal starts sort stably."""
    return sorted(records, key=lambda r: (r.start_time, r.id))


def merge_adjacent_sessions(
    records:   Iterable[SessionRecord],
    gap_limit: float = MERGE_GAP_THRESHOLD,
) -> List[MergedSegment]:
    ordered = sort_by_start(records)
    if not ordered:
        return []

    first = ordered[0]
    current = MergedSegment(
        app_name       = first.app_name,
        start          = first.start_time,
        end            = first.start_time + first.duration,
        total_duration = first.duration,
    )
    segments: List[MergedSegment] = []

    for r in ordered[1:]:
        gap = r.start_time - current.end
        if r.app_name == current.app_name and gap < gap_limit:
            current.end = max(current.end, r.start_time + r.duration)
            current.total_duration = current.end - current.start
        else:
            segments.append(current)
            current = MergedSegment(
                app_name       = r.app_name,
                start          = r.start_time,
                end            = r.start_time + r.duration,
                total_duration = r.duration,
            )
    segments.append(current)
    return segments
