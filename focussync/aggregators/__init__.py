"""focussync/aggregators — merge, score and summarize a day of sessions."""
