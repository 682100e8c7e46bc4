"""
focussync/llm — analysis backends for the daily review.
"""

from focussync.llm.base import AnalysisAdapter, parse_analysis_response
from focussync.llm.ollama_adapter import OllamaAdapter

__all__ = [
    "AnalysisAdapter",
    "OllamaAdapter",
    "parse_analysis_response",
]
