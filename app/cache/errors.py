"""
Error taxonomy for the sheet cache.

Every remote and storage failure is converted into one of these types at the
cache boundary. None of them is allowed to escape the coordinator or the
bootstrapper as an unhandled fault.
"""
from typing import Optional


class CacheError(Exception):
    """Base class for all cache subsystem errors."""


class ConfigError(CacheError):
    """Required credentials or the spreadsheet identifier are missing."""


class RemoteFetchError(CacheError):
    """Network failure or non-success response from the remote source."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.detail}"
        return self.detail


class DurableReadError(CacheError):
    """Persisted record is missing or cannot be parsed."""


class DurableWriteError(CacheError):
    """Persisting a record failed after a successful fetch."""


class AlreadyInProgress(CacheError):
    """A manual refresh was rejected because another refresh is running."""

    def __init__(self, detail: str = "A cache refresh is already in progress."):
        super().__init__(detail)


class DataUnavailableError(CacheError):
    """No data could be obtained through any cache tier."""
