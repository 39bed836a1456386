"""
Recurring timer used to drive the bot loop.
"""
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class PeriodicTrigger:
    """
    Calls `callback` every `interval_seconds` until cancelled.

    The timer runs in a daemon thread and dispatches each tick on its own
    worker thread, so a slow callback never delays the schedule. Callers that
    must not overlap need their own guard.
    """

    def __init__(self, interval_seconds: float, callback: Callable[[], None], name: str = 'periodic-trigger'):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.interval_seconds = interval_seconds
        self.callback = callback
        self.name = name
        self._cancelled = threading.Event()
        self._thread = None

    @property
    def is_armed(self) -> bool:
        return self._thread is not None and not self._cancelled.is_set()

    def start(self):
        """Arm the timer; the first tick fires one interval from now"""
        if self._thread is not None:
            logger.warning(f"{self.name} already started")
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"{self.name} armed every {self.interval_seconds}s")

    def cancel(self, join_timeout: float = 1.0):
        """Prevent future ticks and wait for the timer thread to exit; a tick already dispatched keeps running"""
        self._cancelled.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(join_timeout)

    def _run(self):
        tick = 0
        while not self._cancelled.wait(self.interval_seconds):
            tick += 1
            worker = threading.Thread(target=self._fire, name=f"{self.name}-tick-{tick}", daemon=True)
            worker.start()

    def _fire(self):
        try:
            self.callback()
        except Exception as e:
            logger.error(f"Error in {self.name} callback: {e}")
