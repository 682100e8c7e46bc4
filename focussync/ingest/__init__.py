"""focussync/ingest — request-side validation and enqueue."""
