"""
Periodic refresh independent of consumer traffic.
"""
import threading
import logging
from typing import Optional

from .coordinator import RefreshCoordinator

logger = logging.getLogger("cache.scheduler")


class RefreshScheduler:
    """
    Calls ``refresh(manual=False)`` on a fixed period.

    The loop waits on a stop event rather than sleeping, so ``stop()`` ends
    it promptly at shutdown. A failed tick is logged and the next one still
    runs.
    """

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        interval_seconds: float,
        enabled: bool = True,
    ):
        self._coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """
        Start the periodic loop.

        Returns:
            False if the scheduler is disabled or already running
        """
        if not self.enabled:
            logger.warning(
                "Scheduled cache updates are disabled due to missing API key or spreadsheet ID."
            )
            return False
        if self.running:
            return False

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name="cache-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Scheduled cache updates every {self.interval_seconds:.0f}s")
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Cancel the loop and wait for the current tick to finish.

        If the tick outlives ``timeout`` the thread is kept, so ``running``
        stays True and ``start()`` cannot launch a second loop beside it.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(
                    f"Scheduler did not stop within {timeout}s; a tick is still running"
                )
                return
            self._thread = None
        logger.info("Scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def tick(self) -> None:
        """Run one scheduled refresh."""
        self.ticks += 1
        logger.info("Scheduled cache update triggered.")
        try:
            result = self._coordinator.refresh(manual=False)
        except Exception:
            logger.exception("Scheduled cache update raised")
            return
        if not result.success:
            logger.warning(f"Scheduled cache update failed: {result.error}")
