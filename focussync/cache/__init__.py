"""focussync/cache — daily summary cache."""
