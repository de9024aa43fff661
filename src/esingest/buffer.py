"""
esingest Buffer — Pending Operations
====================================

BatchBuffer collects operations until a flush takes them all as one Batch.
PendingState keeps the process-wide counters the ceiling is checked against.

Lock order (never acquired the other way round):
    BatchBuffer._lock  ->  Dispatcher._lock  ->  PendingState._lock
"""

import itertools
import logging
import threading
import time
from typing import Callable, List, Optional

from .exceptions import CapacityExceeded, IngesterClosed
from .operations import Batch, Operation


logger = logging.getLogger(__name__)


class PendingState:
    """
    Counters for operations that have not reached a terminal outcome.

    pending_bytes covers buffered, queued and in-flight operations; the
    bytes of a batch are released when the dispatcher finishes with it.
    """

    def __init__(self, max_pending_bytes: int):
        self.max_pending_bytes = max_pending_bytes
        self._lock = threading.Lock()
        self.pending_bytes = 0
        self.in_flight = 0

    def reserve(self, size: int) -> None:
        with self._lock:
            if self.pending_bytes + size > self.max_pending_bytes:
                raise CapacityExceeded(self.pending_bytes, size, self.max_pending_bytes)
            self.pending_bytes += size

    def release(self, size: int) -> None:
        with self._lock:
            self.pending_bytes -= size

    def batch_started(self) -> None:
        with self._lock:
            self.in_flight += 1

    def batch_finished(self) -> None:
        with self._lock:
            self.in_flight -= 1

    def snapshot(self) -> dict:
        with self._lock:
            return {"pending_bytes": self.pending_bytes, "in_flight": self.in_flight}


class BatchBuffer:
    """
    Thread-safe accumulator of operations.

    add() never blocks on the network: it either appends or raises
    CapacityExceeded. drain() swaps in an empty buffer and returns what was
    collected, so concurrent adds never see a half-flushed buffer.

    Example:
        buffer = BatchBuffer(max_operations=3, max_bytes=5 * 1024 * 1024,
                             state=PendingState(50 * 1024 * 1024))
        buffer.add(op)
        if buffer.should_flush():
            batch = buffer.drain()
    """

    def __init__(
        self,
        max_operations: int,
        max_bytes: int,
        state: PendingState,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_operations = max_operations
        self.max_bytes = max_bytes
        self.state = state
        self._clock = clock
        self._lock = threading.RLock()
        self._operations: List[Operation] = []
        self._bytes = 0
        self._batch_ids = itertools.count(1)
        self._closed = False
        self.last_flush = clock()

    @property
    def lock(self) -> threading.RLock:
        """Held by callers that must pair drain() with another step atomically."""
        return self._lock

    @property
    def current_count(self) -> int:
        with self._lock:
            return len(self._operations)

    @property
    def current_bytes(self) -> int:
        with self._lock:
            return self._bytes

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, operation: Operation) -> bool:
        """
        Append an operation.

        Returns:
            True when a count or size threshold has been reached

        Raises:
            IngesterClosed: after close()
            CapacityExceeded: if the pending-bytes ceiling would be breached
        """
        with self._lock:
            if self._closed:
                raise IngesterClosed("Buffer is closed")
            self.state.reserve(operation.size_in_bytes)
            self._operations.append(operation)
            self._bytes += operation.size_in_bytes
            return self._thresholds_reached()

    def should_flush(self) -> bool:
        with self._lock:
            return self._thresholds_reached()

    def _thresholds_reached(self) -> bool:
        return len(self._operations) >= self.max_operations or self._bytes >= self.max_bytes

    def elapsed_since_flush(self) -> float:
        return self._clock() - self.last_flush

    def drain(self) -> Optional[Batch]:
        """
        Take the whole buffer as one batch and start a fresh one.

        Returns None (and still resets the flush timer) when empty.
        """
        with self._lock:
            self.last_flush = self._clock()
            if not self._operations:
                return None
            batch = Batch(next(self._batch_ids), tuple(self._operations))
            self._operations = []
            self._bytes = 0
        logger.debug("Drained batch %d with %d operations", batch.batch_id, batch.count)
        return batch

    def close(self) -> None:
        """Stop accepting operations; buffered ones remain until drained."""
        with self._lock:
            self._closed = True
