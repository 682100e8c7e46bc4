"""
focussync/llm/base.py
Abstract base class for analysis backends.
To add a new backend: subclass AnalysisAdapter and implement analyze().
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Optional

from focussync.models.record import AnalysisResult, DailyStats

TOP_APPS_IN_PROMPT = 10

_FENCE_OPEN = re.compile(r'^```(?:json)?\s*\n?')
_FENCE_CLOSE = re.compile(r'\n?```\s*$')


class AnalysisAdapter(ABC):
    """
    All analysis backends implement this interface.
    The read path calls analyze() and gets back an AnalysisResult.
    The caller never knows which backend is running.
    """

    model: str = ''

    @abstractmethod
    def is_available(self) -> bool:
        """
        Returns True if the backend is reachable and ready, so the
        analyze endpoint can fail fast with a 503.
        """
        ...

    @abstractmethod
    def analyze(self, date: str, stats: DailyStats) -> Optional[AnalysisResult]:
        """
        Review one day of stats.
        Returns None on backend failure or an unusable response.
        Never raises — catch internally and return None.
        """
        ...

    def build_prompt(self, date: str, stats: DailyStats) -> str:
        """
        Shared prompt builder. Totals, rule scores and top apps only —
        window titles and URLs never leave the server.
        """
        top_apps = '\n'.join(
            f"{i + 1}. {a.app_name} — {round(a.total_duration / 60)}min "
            f"({a.session_count} sessions)"
            for i, a in enumerate(stats.top_apps[:TOP_APPS_IN_PROMPT])
        )
        s = stats.scores
        return (
            "You are a productivity analyst. Review this person's computer "
            f"usage for {date} and write a short report.\n\n"
            "OVERVIEW:\n"
            f"- Total active time: {round(stats.total_duration / 60)} minutes\n"
            f"- Sessions: {stats.total_sessions}\n"
            f"- Applications used: {stats.total_apps}\n"
            f"- Active span: {round(stats.active_span / 60)} minutes\n\n"
            "RULE-BASED SCORES:\n"
            f"- Focus: {s.focus}/100\n"
            f"- Deep work: {s.deep_work}/100\n"
            f"- Switch rate: {s.switch_rate}/100\n"
            f"- Concentration: {s.concentration}/100\n"
            f"- Overall: {s.overall}/100\n\n"
            "TOP APPS:\n"
            f"{top_apps or '(none)'}\n\n"
            "Respond ONLY with a valid JSON object. No markdown, no explanation.\n\n"
            "{\n"
            '  "score": integer 1-100,\n'
            '  "highlights": ["2-4 things that went well"],\n'
            '  "improvements": ["2-4 concrete suggestions"],\n'
            '  "summary": "markdown summary, 100-200 words"\n'
            "}"
        )


def parse_analysis_response(text: str, model: str = '') -> AnalysisResult:
    """
    Parse and validate a backend's JSON reply.
    Handles models that wrap the JSON in markdown fences.

    Raises:
        ValueError: not JSON, or a field is missing/out of range.
    """
    clean = text.strip()
    if clean.startswith('```'):
        clean = _FENCE_CLOSE.sub('', _FENCE_OPEN.sub('', clean))

    data = json.loads(clean)     # JSONDecodeError is a ValueError
    if not isinstance(data, dict):
        raise ValueError("analysis response is not a JSON object")

    try:
        score = float(data.get('score'))
    except (TypeError, ValueError):
        raise ValueError("analysis returned invalid score")
    if not (1 <= score <= 100):
        raise ValueError("analysis returned invalid score")

    highlights = data.get('highlights')
    if not isinstance(highlights, list) or not highlights:
        raise ValueError("analysis returned invalid highlights")

    improvements = data.get('improvements')
    if not isinstance(improvements, list) or not improvements:
        raise ValueError("analysis returned invalid improvements")

    summary = data.get('summary')
    if not isinstance(summary, str) or not summary:
        raise ValueError("analysis returned invalid summary")

    return AnalysisResult(
        score        = int(score + 0.5),
        highlights   = [str(h) for h in highlights],
        improvements = [str(i) for i in improvements],
        summary      = summary,
        model        = model,
    )
