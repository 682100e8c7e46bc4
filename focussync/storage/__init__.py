"""focussync/storage — SQLite persistence."""
