"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from enum import Enum

from .errors import AlreadyInProgress, CacheError, DurableReadError


def utc_now() -> datetime:
    """Current UTC time truncated to millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_epoch_ms(moment: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(round(moment.timestamp() * 1000))


def from_epoch_ms(value: float) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class CacheSource(Enum):
    """Tier that served a read."""
    MEMORY = "memory"       # Fresh in-memory record
    DURABLE = "durable"     # Fresh record hydrated from the cache file
    UPSTREAM = "upstream"   # Fetched from the remote source during the read


class LoadStatus(Enum):
    """Outcome of reading the durable store."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    CORRUPT = "corrupt"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class CacheRecord:
    """
    The single cached snapshot.

    ``payload`` is opaque: it is stored and served exactly as received.
    Records are replaced whole, never mutated.
    """
    payload: Any
    updated_at: datetime = field(default_factory=utc_now)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the record was written."""
        now = now or datetime.now(timezone.utc)
        return (now - self.updated_at).total_seconds()

    def is_fresh(self, max_age_seconds: float, now: Optional[datetime] = None) -> bool:
        """Fresh iff younger than the freshness window."""
        return self.age_seconds(now) < max_age_seconds

    def to_dict(self) -> dict:
        """Serialize to the persisted file layout."""
        return {
            "lastCacheUpdateTime": to_epoch_ms(self.updated_at),
            "data": self.payload,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "CacheRecord":
        """
        Parse the persisted file layout.

        Raises:
            DurableReadError: If the structure is not a cache record
        """
        if not isinstance(raw, dict):
            raise DurableReadError(f"expected a JSON object, got {type(raw).__name__}")
        if "lastCacheUpdateTime" not in raw or "data" not in raw:
            raise DurableReadError("missing 'lastCacheUpdateTime' or 'data'")
        timestamp = raw["lastCacheUpdateTime"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise DurableReadError(f"invalid lastCacheUpdateTime: {timestamp!r}")
        try:
            updated_at = from_epoch_ms(timestamp)
        except (OverflowError, OSError, ValueError) as e:
            raise DurableReadError(f"invalid lastCacheUpdateTime: {e}") from e
        return cls(payload=raw["data"], updated_at=updated_at)


@dataclass(frozen=True)
class DurableLoad:
    """Result of ``DurableStore.load()``."""
    status: LoadStatus
    record: Optional[CacheRecord] = None
    error: Optional[DurableReadError] = None

    @property
    def found(self) -> bool:
        return self.status == LoadStatus.FOUND


@dataclass
class RefreshResult:
    """
    Structured outcome of a refresh attempt.

    ``skipped`` marks a non-manual call that found a refresh already in
    flight and returned the current memory contents instead.
    """
    success: bool
    data: Any = None
    error: Optional[CacheError] = None
    status_code: Optional[int] = None
    updated_at: Optional[datetime] = None
    skipped: bool = False

    @property
    def in_progress(self) -> bool:
        """True when a manual refresh was rejected by the single-flight gate."""
        return isinstance(self.error, AlreadyInProgress)

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.error is not None:
            result["error"] = str(self.error)
            result["errorType"] = type(self.error).__name__
        if self.status_code is not None:
            result["status"] = self.status_code
        if self.skipped:
            result["skipped"] = True
        return result


@dataclass
class CacheMeta:
    """
    Metadata about a read, exposed as response headers.
    """
    cache_source: str  # "memory", "durable", or "upstream"
    last_updated: Optional[str] = None  # ISO timestamp of the record
    age_seconds: Optional[float] = None

    def to_headers(self) -> dict:
        """Convert to HTTP response headers."""
        headers = {"X-Cache-Source": self.cache_source}
        if self.last_updated:
            headers["X-Cache-Updated"] = self.last_updated
        if self.age_seconds is not None:
            headers["X-Cache-Age"] = str(int(self.age_seconds))
        return headers
