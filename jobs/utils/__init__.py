"""Worker-side helpers for the indexer actors."""
