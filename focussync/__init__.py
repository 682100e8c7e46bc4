"""
focussync — focus-session ingestion and daily productivity review.
"""

__version__ = "1.0.0"
