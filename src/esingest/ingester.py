"""
esingest Ingester — Batching Bulk Writes
========================================

BulkIngester is the public entry point. Operations added from any number
of threads are buffered, flushed into batches by count, size or time, and
sent to Elasticsearch by a bounded pool of dispatch threads.

    caller -> add(op) -> BatchBuffer -> flush -> Dispatcher -> Transport
                                                     |
                                          ResultListener callbacks

Typical usage:
    client = build_client(hosts=["http://localhost:9200"])
    config = IngesterConfig(max_operations=200, flush_interval_ms=5000)

    with BulkIngester.for_client(client, config, listener=LoggingResultListener()) as ingester:
        for n in range(1100):
            ingester.add(Operation.index_doc(
                "my_index3", {"field1": f"test-{n}"},
                id=f"my-id-{n}", routing=f"my-routing-{n}", context=f"my-context-{n}",
            ))
    # close() flushed and waited for everything
"""

import logging
import threading
from typing import Iterable, Optional

from elasticsearch import Elasticsearch

from .buffer import BatchBuffer, PendingState
from .config import IngesterConfig
from .dispatcher import BatchHandle, Dispatcher
from .exceptions import IngesterClosed
from .listener import ResultListener
from .operations import Operation
from .scheduler import FlushScheduler
from .transport import ElasticsearchTransport, Transport


logger = logging.getLogger(__name__)


class BulkIngester:
    """
    Buffers write operations and sends them as bulk requests.

    Features:
        - Non-blocking add() from many threads
        - Count, size and time flush triggers
        - Bounded number of concurrent bulk requests
        - Exponential backoff for throttling and transient errors
        - Per-batch and per-operation results through a listener
        - close() drains everything before returning
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[IngesterConfig] = None,
        listener: Optional[ResultListener] = None,
        name: str = "esingest",
        owns_transport: bool = False
    ):
        """
        Create an ingester and start its flush timer.

        Args:
            transport: Transport batches are sent through
            config: Thresholds, concurrency and retry settings
            listener: Receives batch results (default: no-op)
            name: Shows up in thread names and log lines
            owns_transport: Close the transport in close()
        """
        self.config = config or IngesterConfig()
        self.name = name
        self.transport = transport
        self.listener = listener or ResultListener()
        self.owns_transport = owns_transport

        self.state = PendingState(self.config.max_pending_bytes)
        self._buffer = BatchBuffer(
            self.config.max_operations,
            self.config.max_bytes,
            self.state
        )
        self._dispatcher = Dispatcher(
            transport,
            self.listener,
            self.config.retry_policy(),
            self.state,
            max_concurrent_requests=self.config.max_concurrent_requests,
            name=name
        )

        self._scheduler: Optional[FlushScheduler] = None
        if self.config.flush_interval is not None:
            self._scheduler = FlushScheduler(
                self.config.flush_interval, self._buffer, self.flush, name=name
            )
            self._scheduler.start()

        self._close_lock = threading.Lock()
        self._closed = False
        self.operations_added = 0

    @classmethod
    def for_client(
        cls,
        client: Elasticsearch,
        config: Optional[IngesterConfig] = None,
        listener: Optional[ResultListener] = None,
        name: str = "esingest",
        refresh: Optional[str] = None
    ) -> "BulkIngester":
        """Ingester sending through `client.bulk`. The client stays open after close()."""
        return cls(
            ElasticsearchTransport(client, refresh=refresh),
            config=config,
            listener=listener,
            name=name,
            owns_transport=True
        )

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_count(self) -> int:
        return self._buffer.current_count

    @property
    def current_bytes(self) -> int:
        return self._buffer.current_bytes

    def add(self, operation: Operation) -> None:
        """
        Buffer one operation; flushes when a count or size threshold is reached.

        Raises:
            IngesterClosed: after close()
            CapacityExceeded: if too many bytes are pending
        """
        with self._buffer.lock:
            if self._buffer.add(operation):
                self._flush_locked()
            self.operations_added += 1

    def add_many(self, operations: Iterable[Operation]) -> int:
        """Add operations one by one; returns how many were added."""
        added = 0
        for op in operations:
            self.add(op)
            added += 1
        return added

    def flush(self) -> Optional[BatchHandle]:
        """
        Send whatever is buffered now, regardless of thresholds.

        Returns:
            Handle of the dispatched batch, None if nothing was buffered
        """
        with self._buffer.lock:
            return self._flush_locked()

    def _flush_locked(self) -> Optional[BatchHandle]:
        # Queue while holding the buffer lock so batches reach the
        # dispatcher in the order they were drained
        batch = self._buffer.drain()
        if batch is None:
            return None
        logger.debug("[%s] flushing batch %d (%d operations, %d bytes)",
                     self.name, batch.batch_id, batch.count, batch.size_in_bytes)
        return self._dispatcher.submit(batch)

    def close(self) -> None:
        """
        Stop accepting operations, flush, and wait for every batch to finish.

        Runs to completion even if earlier batches failed. Must not be called
        from a listener callback.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        self._buffer.close()
        if self._scheduler is not None:
            self._scheduler.stop()

        try:
            self.flush()
        finally:
            self._dispatcher.shutdown(wait=True)
            if self.owns_transport:
                self.transport.close()

        logger.info("[%s] closed: %s", self.name, self.stats())

    def stats(self) -> dict:
        """Buffer, dispatch and outcome counters."""
        pending = self.state.snapshot()
        return {
            "operations_added": self.operations_added,
            "buffered_operations": self.current_count,
            "buffered_bytes": self.current_bytes,
            "pending_bytes": pending["pending_bytes"],
            "in_flight": pending["in_flight"],
            **self._dispatcher.stats(),
        }

    def __enter__(self):
        if self._closed:
            raise IngesterClosed("Ingester is closed")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
