"""Quarry — incremental text indexing and vector retrieval on SQLite."""
