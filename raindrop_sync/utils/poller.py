"""
Periodic sync scheduling

Runs a sync function on a fixed interval from a background thread. The
poller owns at most one timer; starting it again replaces the previous one.
"""

import threading
from typing import Callable, Optional, Union

from loguru import logger
from beartype import beartype as typecheck


class SyncPoller:
    """
    Owner of the single periodic sync timer of a process.

    Each tick calls ``sync_fn`` and logs its outcome. Exceptions raised by
    ``sync_fn`` are logged and never stop the timer.
    """

    @typecheck
    def __init__(self, sync_fn: Callable):
        """
        Parameters
        ----------
        sync_fn : Callable
            Called on each tick, usually ``RaindropSync.perform_sync``
        """
        self.sync_fn = sync_fn
        self.interval_minutes: Optional[Union[int, float]] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._guard = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @typecheck
    def start(self, interval_minutes: Union[int, float]) -> None:
        """
        Schedule ``sync_fn`` every ``interval_minutes``.

        Any running timer is stopped first. An interval of zero or less
        leaves the poller stopped.
        """
        with self._guard:
            self._stop_locked()

            if interval_minutes <= 0:
                logger.info("Automatic sync disabled (interval is 0)")
                return

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(interval_minutes * 60, stop_event),
                name="raindrop-sync-poller",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            self.interval_minutes = interval_minutes
            thread.start()

        logger.info(f"Automatic sync every {interval_minutes} minute(s)")

    @typecheck
    def stop(self) -> None:
        """Cancel the timer. Does nothing if no timer is running."""
        with self._guard:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._thread is None:
            return

        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join()
        logger.debug("Stopped automatic sync")

        self._thread = None
        self._stop_event = None
        self.interval_minutes = None

    def _run(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval_seconds):
            self.tick()

    def tick(self) -> None:
        """Run one sync and log the outcome, swallowing any error."""
        try:
            result = self.sync_fn()
        except Exception as e:
            logger.exception(f"Auto-sync error: {e}")
            return

        summary = getattr(result, "summary", None)
        if getattr(result, "failed", False):
            logger.error(f"Auto-sync failed: {summary() if summary else result}")
        elif summary:
            logger.info(f"Auto-sync: {summary()}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()
