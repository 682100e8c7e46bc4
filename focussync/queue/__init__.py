"""focussync/queue — in-memory sync queue and its drain worker."""
