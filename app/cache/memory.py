"""
In-process copy of the cache record.
"""
import threading
import logging
from typing import Optional

from .core import CacheRecord

logger = logging.getLogger("cache.memory")


class MemoryStore:
    """
    Holds the single cache record in volatile memory.

    Authoritative for the lifetime of the process. Route handlers run on
    worker threads, so access is serialized with a lock.
    """

    def __init__(self):
        self._record: Optional[CacheRecord] = None
        self._lock = threading.RLock()

    def get(self) -> Optional[CacheRecord]:
        """Current record, or None when empty."""
        with self._lock:
            return self._record

    def set(self, record: CacheRecord) -> None:
        """Unconditionally replace the current record."""
        with self._lock:
            self._record = record

    def hydrate(self, record: CacheRecord) -> bool:
        """
        Copy a record loaded from durable storage into memory.

        Refuses to replace a record that is newer or equally new, so a read
        that raced a refresh never rolls ``updated_at`` backwards or swaps the
        payload behind an unchanged timestamp.

        Returns:
            True if memory now holds ``record``
        """
        with self._lock:
            current = self._record
            if current is not None and current.updated_at >= record.updated_at:
                if current == record:
                    return True
                logger.debug(
                    f"Skipping hydration: memory is not older "
                    f"({current.updated_at.isoformat()} >= {record.updated_at.isoformat()})"
                )
                return False
            self._record = record
            return True

    def is_fresh(self, max_age_seconds: float) -> bool:
        """An empty store is never fresh."""
        record = self.get()
        return record is not None and record.is_fresh(max_age_seconds)

    @property
    def is_empty(self) -> bool:
        return self.get() is None
