"""
Single-flight refresh of the cached snapshot.

Only one remote fetch runs at a time. Callers that arrive while a fetch is
in flight are never queued behind it:
- scheduled/opportunistic callers get the current memory contents back
- manual callers are rejected with AlreadyInProgress
"""
import threading
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from .core import CacheRecord, RefreshResult, utc_now
from .durable import DurableStore
from .errors import AlreadyInProgress, ConfigError, DurableWriteError, RemoteFetchError
from .memory import MemoryStore

logger = logging.getLogger("cache.coordinator")


class RefreshCoordinator:
    """
    Fetches a fresh snapshot and commits it to memory, then to disk.

    The busy flag is a non-blocking lock acquisition, so "check busy" and
    "set busy" are one indivisible step. It is released in a ``finally``
    block on every exit path.
    """

    def __init__(
        self,
        memory: MemoryStore,
        durable: DurableStore,
        fetch_fn: Callable[[], Any],
        is_configured: Optional[Callable[[], bool]] = None,
    ):
        """
        Args:
            memory: In-process store, written first
            durable: File store, written second
            fetch_fn: Zero-argument callable returning the remote payload.
                May raise ConfigError or RemoteFetchError.
            is_configured: Returns False when credentials are missing
        """
        self._memory = memory
        self._durable = durable
        self._fetch_fn = fetch_fn
        self._is_configured = is_configured or (lambda: True)
        self._busy = threading.Lock()

        self._stats_lock = threading.Lock()
        self._stats = {
            "fetches": 0,
            "successes": 0,
            "failures": 0,
            "skipped": 0,
            "rejected": 0,
            "durable_write_errors": 0,
        }
        self._last_result: Optional[RefreshResult] = None

    @property
    def in_flight(self) -> bool:
        """True while a remote fetch is running."""
        return self._busy.locked()

    @property
    def last_result(self) -> Optional[RefreshResult]:
        return self._last_result

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def refresh(self, manual: bool = False) -> RefreshResult:
        """
        Fetch from the remote source and commit the result.

        Args:
            manual: True for an explicit operator-triggered refresh

        Returns:
            RefreshResult; never raises for remote or storage failures
        """
        if not self._is_configured():
            error = ConfigError("Cannot fetch: API key or spreadsheet ID not set.")
            logger.error(str(error))
            return self._finish(RefreshResult(success=False, error=error))

        if not self._busy.acquire(blocking=False):
            return self._reject_concurrent(manual)

        try:
            return self._finish(self._fetch_and_commit(manual))
        finally:
            self._busy.release()

    def _reject_concurrent(self, manual: bool) -> RefreshResult:
        """Handle a call that lost the single-flight race."""
        if manual:
            logger.info("Manual refresh rejected: a refresh is already in progress.")
            self._count("rejected")
            return RefreshResult(success=False, error=AlreadyInProgress())

        logger.info("Refresh already in progress, skipping automatic fetch.")
        self._count("skipped")
        current = self._memory.get()
        return RefreshResult(
            success=True,
            data=current.payload if current else None,
            updated_at=current.updated_at if current else None,
            skipped=True,
        )

    def _fetch_and_commit(self, manual: bool) -> RefreshResult:
        """Run the fetch. Caller holds the busy flag."""
        self._count("fetches")
        trigger = "manual" if manual else "automatic"
        logger.info(f"Starting {trigger} refresh from remote source")

        try:
            payload = self._fetch_fn()
        except ConfigError as e:
            logger.error(f"Refresh failed: {e}")
            return RefreshResult(success=False, error=e)
        except RemoteFetchError as e:
            logger.error(f"Refresh failed: {e}")
            return RefreshResult(success=False, error=e, status_code=e.status_code)
        except Exception as e:
            logger.exception("Unexpected error during remote fetch")
            error = RemoteFetchError(f"Error fetching/processing data: {e}")
            return RefreshResult(success=False, error=error)

        record = self._new_record(payload)

        # Memory first: reads racing the file write already see new data
        self._memory.set(record)
        try:
            self._durable.save(record)
        except DurableWriteError as e:
            self._count("durable_write_errors")
            logger.error(f"Error writing to cache file: {e}")

        logger.info(f"Data written to memory and file. Last update: {record.updated_at.isoformat()}")
        return RefreshResult(success=True, data=payload, updated_at=record.updated_at)

    def _new_record(self, payload: Any) -> CacheRecord:
        """Create a record whose timestamp is strictly after the current one."""
        updated_at = utc_now()
        current = self._memory.get()
        if current is not None and updated_at <= current.updated_at:
            # Clock stepped back; two payloads must never share a timestamp
            updated_at = current.updated_at + timedelta(milliseconds=1)
        return CacheRecord(payload=payload, updated_at=updated_at)

    def _finish(self, result: RefreshResult) -> RefreshResult:
        self._count("successes" if result.success else "failures")
        self._last_result = result
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats["in_flight"] = self.in_flight
        if self._last_result is not None:
            stats["last_result"] = self._last_result.to_dict()
        return stats
