"""
focussync/models/record.py
Shared dataclass schema. The gateway, queue, store, aggregators and the
read path all use these types. Do not add I/O here — data only.

JSON shapes returned to the dashboard use camelCase keys; the Python
attributes stay snake_case. to_dict() / from_dict() are the only place
the two meet.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class SessionRecord:
    """One continuous interval of focus on a single application/window."""
    id:             str           # client-assigned, globally unique (dedup key)
    user_id:        str
    device_id:      str
    app_name:       str
    window_title:   str
    start_time:     float         # epoch seconds, UTC
    end_time:       float         # epoch seconds, UTC
    duration:       float         # always end_time - start_time
    url:            Optional[str] = None
    bundle_id:      Optional[str] = None
    tab_title:      Optional[str] = None
    tab_count:      Optional[int] = None
    document_path:  Optional[str] = None
    is_full_screen: bool          = False
    is_minimized:   bool          = False
    synced_at:      str           = ''    # ISO-8601, assigned at ingestion


@dataclass
class MergedSegment:
    """Run of same-app records joined because the gaps between them are small."""
    app_name:       str
    start:          float
    end:            float
    total_duration: float         # end - start


@dataclass
class DailyScores:
    """Four 0-100 dimensions plus the weighted overall."""
    focus:         int = 0
    deep_work:     int = 0
    switch_rate:   int = 0
    concentration: int = 0
    overall:       int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "focus":         self.focus,
            "deepWork":      self.deep_work,
            "switchRate":    self.switch_rate,
            "concentration": self.concentration,
            "overall":       self.overall,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DailyScores":
        return cls(
            focus         = int(d.get("focus", 0)),
            deep_work     = int(d.get("deepWork", 0)),
            switch_rate   = int(d.get("switchRate", 0)),
            concentration = int(d.get("concentration", 0)),
            overall       = int(d.get("overall", 0)),
        )


@dataclass
class AppSummary:
    app_name:       str
    bundle_id:      Optional[str]
    total_duration: float
    session_count:  int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appName":       self.app_name,
            "bundleId":      self.bundle_id,
            "totalDuration": self.total_duration,
            "sessionCount":  self.session_count,
        }


@dataclass
class SessionForChart:
    """Chart-ready session row (Gantt timeline)."""
    id:           str
    app_name:     str
    bundle_id:    Optional[str]
    window_title: str
    url:          Optional[str]
    start_time:   float
    duration:     float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id":          self.id,
            "appName":     self.app_name,
            "bundleId":    self.bundle_id,
            "windowTitle": self.window_title,
            "url":         self.url,
            "startTime":   self.start_time,
            "duration":    self.duration,
        }


@dataclass
class DailyStats:
    date:           str
    total_duration: float                 = 0
    total_sessions: int                   = 0
    total_apps:     int                   = 0
    active_span:    float                 = 0    # last end - first start
    scores:         DailyScores           = field(default_factory=DailyScores)
    top_apps:       List[AppSummary]      = field(default_factory=list)
    sessions:       List[SessionForChart] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date":          self.date,
            "totalDuration": self.total_duration,
            "totalSessions": self.total_sessions,
            "totalApps":     self.total_apps,
            "activeSpan":    self.active_span,
            "scores":        self.scores.to_dict(),
            "topApps":       [a.to_dict() for a in self.top_apps],
            "sessions":      [s.to_dict() for s in self.sessions],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DailyStats":
        return cls(
            date           = d["date"],
            total_duration = d.get("totalDuration", 0),
            total_sessions = d.get("totalSessions", 0),
            total_apps     = d.get("totalApps", 0),
            active_span    = d.get("activeSpan", 0),
            scores         = DailyScores.from_dict(d.get("scores") or {}),
            top_apps       = [
                AppSummary(
                    app_name       = a["appName"],
                    bundle_id      = a.get("bundleId"),
                    total_duration = a.get("totalDuration", 0),
                    session_count  = a.get("sessionCount", 0),
                )
                for a in d.get("topApps", [])
            ],
            sessions       = [
                SessionForChart(
                    id           = s["id"],
                    app_name     = s["appName"],
                    bundle_id    = s.get("bundleId"),
                    window_title = s.get("windowTitle", ""),
                    url          = s.get("url"),
                    start_time   = s["startTime"],
                    duration     = s["duration"],
                )
                for s in d.get("sessions", [])
            ],
        )


@dataclass
class SyncLogEntry:
    """Append-only audit row, one per drained batch."""
    id:            str            # the batch sync_id
    user_id:       str
    device_id:     str
    session_count: int
    first_start:   float
    last_start:    float
    synced_at:     str


@dataclass
class DrainResult:
    """Outcome of writing one batch."""
    sync_id:    str
    inserted:   int = 0
    duplicates: int = 0
    failed:     int = 0       # records still unwritten after retries


@dataclass
class AnalysisResult:
    """Externally generated review of a day (LLM output, validated)."""
    score:        int
    highlights:   List[str]
    improvements: List[str]
    summary:      str
    model:        str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score":        self.score,
            "highlights":   list(self.highlights),
            "improvements": list(self.improvements),
            "summary":      self.summary,
        }


@dataclass
class DailySummary:
    """Cache entry keyed by (user_id, date). Stats and analysis are independent."""
    user_id:         str
    date:            str
    stats:           Optional[DailyStats]     = None
    ai_score:        Optional[int]            = None
    ai_result:       Optional[Dict[str, Any]] = None
    ai_model:        Optional[str]            = None
    ai_generated_at: Optional[str]            = None

    def ai_dict(self) -> Optional[Dict[str, Any]]:
        if self.ai_result is None:
            return None
        return {
            "score":       self.ai_score,
            "result":      self.ai_result,
            "model":       self.ai_model,
            "generatedAt": self.ai_generated_at,
        }
