"""SQLite-backed storage."""
