"""
Main cache orchestration: two tiers, single-flight refresh, cold-start barrier.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from config.settings import Settings, settings as default_settings

from .bootstrap import Bootstrapper
from .coordinator import RefreshCoordinator
from .core import CacheMeta, CacheRecord, CacheSource, RefreshResult
from .durable import DurableStore
from .errors import DataUnavailableError
from .memory import MemoryStore
from .scheduler import RefreshScheduler

logger = logging.getLogger("cache.manager")


class SheetCacheManager:
    """
    Owns every piece of cache state for the one cached dataset:
    - memory store and durable store
    - refresh coordinator (busy flag)
    - bootstrapper (readiness event)
    - scheduler

    One instance is shared by all request handlers.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        fetch_fn: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            config: Settings to use (defaults to the global settings)
            fetch_fn: Remote fetch callable; defaults to a SheetsClient
        """
        self.config = config or default_settings
        if fetch_fn is None:
            from app.sheets_client import SheetsClient
            fetch_fn = SheetsClient(self.config)

        self.max_age_seconds = self.config.cache_max_age_seconds
        self.memory = MemoryStore()
        self.durable = DurableStore(self.config.cache_file_path)
        self.coordinator = RefreshCoordinator(
            self.memory,
            self.durable,
            fetch_fn,
            is_configured=lambda: self.config.is_configured,
        )
        self.bootstrapper = Bootstrapper(
            self.memory,
            self.durable,
            self.coordinator,
            self.max_age_seconds,
        )
        self.scheduler = RefreshScheduler(
            self.coordinator,
            interval_seconds=self.max_age_seconds,
            enabled=self.config.is_configured and self.config.scheduler_enabled,
        )

    # ----- lifecycle -----

    def start(self) -> None:
        """Kick off bootstrap in the background and start the scheduler."""
        self.bootstrapper.start()
        self.scheduler.start()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the scheduler and give the bootstrap a moment to finish."""
        self.scheduler.stop(timeout=timeout)
        self.bootstrapper.join(timeout=timeout)

    # ----- read path -----

    def read(self) -> Tuple[Any, CacheMeta]:
        """
        Get the cached payload, refreshing only when no tier is fresh.

        Returns:
            (payload, cache_meta) tuple

        Raises:
            DataUnavailableError: If no data could be obtained
        """
        if not self.bootstrapper.wait(timeout=self.config.bootstrap_wait_seconds):
            logger.warning(
                f"Bootstrap still running after {self.config.bootstrap_wait_seconds}s, "
                f"continuing without it"
            )

        if self.memory.is_fresh(self.max_age_seconds):
            record = self.memory.get()
            logger.debug(f"CACHE HIT (memory): age={record.age_seconds():.1f}s")
            return record.payload, self._make_meta(CacheSource.MEMORY, record)

        loaded = self.durable.load()
        if loaded.found and loaded.record.is_fresh(self.max_age_seconds):
            self.memory.hydrate(loaded.record)
            logger.info("CACHE HIT (file): memory hydrated from cache file")
            return loaded.record.payload, self._make_meta(CacheSource.DURABLE, loaded.record)

        logger.info("CACHE MISS: no fresh tier, refreshing synchronously")
        result = self.coordinator.refresh(manual=False)
        if result.success and result.data is not None:
            source = CacheSource.MEMORY if result.skipped else CacheSource.UPSTREAM
            return result.data, self._make_meta(source, updated_at=result.updated_at)

        detail = str(result.error) if result.error else "no cached data available"
        raise DataUnavailableError(f"Could not load data: {detail}")

    def _make_meta(
        self,
        source: CacheSource,
        record: Optional[CacheRecord] = None,
        updated_at: Optional[datetime] = None,
    ) -> CacheMeta:
        """Create cache metadata for response."""
        if record is not None:
            updated_at = record.updated_at
        return CacheMeta(
            cache_source=source.value,
            last_updated=updated_at.isoformat() if updated_at else None,
            age_seconds=record.age_seconds() if record is not None else None,
        )

    # ----- refresh -----

    def refresh(self, manual: bool = False) -> RefreshResult:
        return self.coordinator.refresh(manual=manual)

    # ----- status -----

    def get_status(self) -> Dict[str, Any]:
        """
        Read-only snapshot of both tiers for the status page.

        Never writes to either store.
        """
        memory_record = self.memory.get()
        loaded = self.durable.load()
        file_record = loaded.record if loaded.found else None

        return {
            "configured": self.config.is_configured,
            "max_age_seconds": self.max_age_seconds,
            "bootstrap_complete": self.bootstrapper.is_complete,
            "refresh_in_flight": self.coordinator.in_flight,
            "scheduler_running": self.scheduler.running,
            "memory": {
                "populated": memory_record is not None,
                "updated_at": memory_record.updated_at if memory_record else None,
                "stale": (
                    not memory_record.is_fresh(self.max_age_seconds)
                    if memory_record else None
                ),
            },
            "file": {
                "path": str(self.durable.path),
                "status": loaded.status.value,
                "last_modified": self.durable.last_modified(),
                "updated_at": file_record.updated_at if file_record else None,
                "stale": (
                    not file_record.is_fresh(self.max_age_seconds)
                    if file_record else True
                ),
            },
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        status = self.get_status()
        for tier in ("memory", "file"):
            for key in ("updated_at", "last_modified"):
                value = status[tier].get(key)
                if isinstance(value, datetime):
                    status[tier][key] = value.isoformat()
        status["coordinator"] = self.coordinator.get_stats()
        status["scheduler_ticks"] = self.scheduler.ticks
        return status


# Global cache manager instance
_cache_manager: Optional[SheetCacheManager] = None


def get_cache_manager() -> SheetCacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = SheetCacheManager()
    return _cache_manager
