"""Token accounting and compaction services."""
