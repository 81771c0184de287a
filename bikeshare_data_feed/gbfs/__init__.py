"""GBFS station information and status snapshot feed.

Implements feed discovery, concurrent sub-feed ingestion, DuckDB snapshot
storage, scheduling and the daily CSV export.
"""

__all__ = [
    "api",
    "archive",
    "db",
    "errors",
    "export",
    "ingest",
    "scheduler",
    "snapshots",
]
