"""focussync/models — shared dataclasses."""
