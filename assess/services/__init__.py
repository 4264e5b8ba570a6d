"""Server-side services backing the persistent store."""
