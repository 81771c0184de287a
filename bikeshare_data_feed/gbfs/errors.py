from __future__ import annotations


class FeedError(Exception):
    """Base exception for the GBFS snapshot feed."""


class FetchError(FeedError):
    """Network failure, timeout, non-2xx status or undecodable JSON."""

    def __init__(self, message: str, *, url: str = "", status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class SchemaError(FeedError):
    """Manifest or payload does not have the expected shape."""


class StoreError(FeedError):
    """DuckDB read or write failure (duplicate keys are not errors)."""


class ArchiveError(FeedError):
    """Upload of an export file to the archive failed."""

    def __init__(self, message: str, *, path: str = "", status_code: int | None = None) -> None:
        self.path = path
        self.status_code = status_code
        super().__init__(message)
