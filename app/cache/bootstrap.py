"""
Cold-start hydration of the memory store.
"""
import threading
import logging
from typing import Optional

from .core import LoadStatus
from .coordinator import RefreshCoordinator
from .durable import DurableStore
from .memory import MemoryStore

logger = logging.getLogger("cache.bootstrap")


class Bootstrapper:
    """
    Runs once at process start and then signals readiness.

    Sequence:
    - Fresh record on disk -> copy it into memory, no remote fetch
    - Missing, corrupt or stale -> one blocking refresh via the coordinator
    - Either way the readiness event is set, even if everything failed

    Reads that arrive during cold start wait on ``ready`` instead of each
    triggering their own fetch.
    """

    def __init__(
        self,
        memory: MemoryStore,
        durable: DurableStore,
        coordinator: RefreshCoordinator,
        max_age_seconds: float,
    ):
        self._memory = memory
        self._durable = durable
        self._coordinator = coordinator
        self._max_age_seconds = max_age_seconds

        self.ready = threading.Event()
        self._started = False
        self._start_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def started(self) -> bool:
        return self._started

    @property
    def is_complete(self) -> bool:
        return self.ready.is_set()

    def _claim(self) -> bool:
        """Mark the bootstrap as started. Only the first caller wins."""
        with self._start_lock:
            if self._started:
                return False
            self._started = True
            return True

    def start(self) -> bool:
        """
        Run the bootstrap on a background thread.

        Returns:
            False if the bootstrap had already been started
        """
        if not self._claim():
            return False
        self._thread = threading.Thread(
            target=self._run,
            name="cache-bootstrap",
            daemon=True,
        )
        self._thread.start()
        logger.info("Initiating background cache population...")
        return True

    def run(self) -> bool:
        """
        Run the bootstrap on the calling thread.

        Returns:
            False if the bootstrap had already been started
        """
        if not self._claim():
            return False
        self._run()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until bootstrap completes.

        Returns immediately when the bootstrap was never started.

        Returns:
            True if ready (or never started), False on timeout
        """
        if not self._started:
            return True
        return self.ready.wait(timeout=timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        try:
            self._hydrate()
        except Exception:
            logger.exception("An error occurred during the initial cache population")
        finally:
            self.ready.set()

        if self._memory.is_empty:
            logger.error(
                "Initial cache population completed, but NO data was loaded into memory. "
                "Check previous logs for fetch errors."
            )
        else:
            logger.info("Initial cache population completed. Data is available in memory.")

    def _hydrate(self) -> None:
        loaded = self._durable.load()

        if loaded.found:
            record = loaded.record
            if record.is_fresh(self._max_age_seconds):
                self._memory.hydrate(record)
                logger.info(
                    f"Valid cache loaded from file. Last update: {record.updated_at.isoformat()}"
                )
                return
            logger.info(
                f"Cache file stale (age {record.age_seconds():.0f}s), fetching fresh data"
            )
        elif loaded.status == LoadStatus.CORRUPT:
            logger.error(f"Cache file corrupt on startup: {loaded.error}")
            self._durable.quarantine()
        elif loaded.status == LoadStatus.UNREADABLE:
            # Content may be valid; leave the file where it is
            logger.error(f"Cache file unreadable on startup: {loaded.error}")
        else:
            logger.info("No cache file on startup, fetching initial data")

        result = self._coordinator.refresh(manual=False)
        if not result.success:
            logger.error(f"Initial fetch failed: {result.error}")
