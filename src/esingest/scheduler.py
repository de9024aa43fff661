"""
esingest Scheduler — Flush Triggers
===================================

Three triggers flush the buffer, whichever fires first:

    count   buffered operations >= max_operations     (checked in add)
    size    buffered bytes      >= max_bytes          (checked in add)
    time    elapsed since last flush >= flush_interval (background thread)

Every flush, whatever its trigger, restarts the interval. A timed flush
with nothing buffered sends nothing.
"""

import logging
import threading
from typing import Callable, Optional

from .buffer import BatchBuffer


logger = logging.getLogger(__name__)


class FlushScheduler:
    """
    Background thread driving the time-based trigger.

    Args:
        interval: Seconds between flushes
        buffer: Buffer whose last flush time is watched
        flush: Called when the interval has elapsed
        name: Thread name prefix
    """

    def __init__(
        self,
        interval: float,
        buffer: BatchBuffer,
        flush: Callable[[], object],
        name: str = "esingest"
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.interval = interval
        self.buffer = buffer
        self._flush = flush
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.name = name
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self.name}-flush-scheduler",
            daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the thread and wait for it. Safe to call more than once."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()

    def _run(self) -> None:
        wait = self.interval
        while not self._stop.wait(wait):
            # Count/size flushes also reset the timer; sleep out the remainder
            remaining = self.interval - self.buffer.elapsed_since_flush()
            if remaining > 0:
                wait = remaining
                continue

            self.ticks += 1
            try:
                self._flush()
            except Exception:
                logger.exception("[%s] scheduled flush failed", self.name)
            wait = self.interval
