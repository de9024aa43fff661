"""
esingest Dispatcher — Bounded-Concurrency Batch Sending
=======================================================

Flushed batches are queued on a thread pool with max_concurrent_requests
workers. Each worker runs one batch to a terminal outcome:

    Flushed -> Dispatching -> Succeeded
                           -> PartiallyFailed
                           -> Failed (Retrying -> Dispatching | Exhausted)

Ordering: batches start in submission order. With a single worker,
operations on the same document reach the cluster in enqueue order. When a
throttled item is resent, later operations of the same batch on the same
document are resent after it, so the document ends in its last enqueued
state. With more workers, same-document operations that land in different
in-flight batches may be applied out of order; use max_concurrent_requests=1
when that matters.

No lock is held while the transport is called.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import List, Optional

from .buffer import PendingState
from .exceptions import (
    DispatchCancelled,
    IngesterClosed,
    RetryExhausted,
    TransportFatal,
    TransportTransient,
)
from .listener import ResultListener
from .operations import Batch
from .results import BatchResult, OperationResult
from .retry import RetryPolicy
from .transport import Transport


logger = logging.getLogger(__name__)


class BatchHandle:
    """
    Future-like view of one dispatched batch.

    Example:
        handle = ingester.flush()
        if handle is not None:
            result = handle.result(timeout=30)
    """

    def __init__(self, batch: Batch):
        self.batch = batch
        self._cancel_requested = threading.Event()
        self._done = threading.Event()
        self._result: Optional[BatchResult] = None
        self._error: Optional[BaseException] = None
        self._future: Optional[Future] = None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def cancel(self) -> bool:
        """
        Cancel the batch.

        A queued batch never reaches the transport. An in-flight batch stops
        before its next retry; a request already on the wire is not aborted.
        Either way a cancelled batch is reported as failed with
        DispatchCancelled unless it completed first.

        Returns:
            False if the batch had already finished
        """
        if self._done.is_set():
            return False
        self._cancel_requested.set()
        if self._future is not None:
            self._future.cancel()
        return True

    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: Optional[float] = None) -> BatchResult:
        """
        Wait for the batch and return its result.

        Raises:
            TimeoutError: if the batch is still running after `timeout`
            IngestError: the error the batch failed with
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Batch {self.batch.batch_id} still running")
        if self._error is not None:
            raise self._error
        return self._result

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        if not self._done.wait(timeout):
            raise TimeoutError(f"Batch {self.batch.batch_id} still running")
        return self._error

    def _finish(self, result: Optional[BatchResult] = None,
                error: Optional[BaseException] = None) -> None:
        self._result = result
        self._error = error
        self._done.set()


class Dispatcher:
    """
    Sends batches through a transport with bounded concurrency and retries.

    Args:
        transport: Where batches are sent
        listener: Receives per-batch callbacks
        retry_policy: Backoff for transient failures
        state: Shared pending counters, released as batches finish
        max_concurrent_requests: Worker threads (bulk requests in flight)
        name: Used for thread names and log lines
    """

    def __init__(
        self,
        transport: Transport,
        listener: ResultListener,
        retry_policy: RetryPolicy,
        state: PendingState,
        max_concurrent_requests: int = 1,
        name: str = "esingest"
    ):
        self.transport = transport
        self.listener = listener
        self.retry_policy = retry_policy
        self.state = state
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_requests,
            thread_name_prefix=f"{name}-dispatch"
        )
        self._lock = threading.Lock()
        self._shutdown = False
        self.queued = 0
        self.batches_completed = 0
        self.batches_failed = 0
        self.operations_succeeded = 0
        self.operations_failed = 0

    @property
    def in_flight(self) -> int:
        return self.state.snapshot()["in_flight"]

    def submit(self, batch: Batch) -> BatchHandle:
        """
        Queue a batch for sending. Never blocks.

        Raises:
            IngesterClosed: after shutdown()
        """
        handle = BatchHandle(batch)
        with self._lock:
            if self._shutdown:
                raise IngesterClosed("Dispatcher is shut down")
            self.queued += 1
            future = self._executor.submit(self._run, handle)
            handle._future = future
        future.add_done_callback(partial(self._on_future_done, handle))
        return handle

    def shutdown(self, wait: bool = True) -> None:
        """Refuse new batches and, if `wait`, block until every batch has finished."""
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait)

    def stats(self) -> dict:
        with self._lock:
            return {
                "queued": self.queued,
                "batches_completed": self.batches_completed,
                "batches_failed": self.batches_failed,
                "operations_succeeded": self.operations_succeeded,
                "operations_failed": self.operations_failed,
            }

    # Worker side

    def _run(self, handle: BatchHandle) -> None:
        batch = handle.batch
        with self._lock:
            self.queued -= 1
        self.state.batch_started()

        result: Optional[BatchResult] = None
        error: Optional[BaseException] = None
        try:
            self._notify("before_flush", batch)
            try:
                result = self._execute(handle)
                self._record(result)
            except Exception as e:
                result = None
                error = e

            if error is None:
                self._notify("on_batch_success", batch, result.items)
            else:
                logger.debug("[%s] batch %d failed: %r", self.name, batch.batch_id, error)
                self._record_failure(batch)
                self._notify("on_batch_failure", batch, error)
            self._notify("after_flush", batch)
        finally:
            self.state.batch_finished()
            self.state.release(batch.size_in_bytes)
            handle._finish(result, error)

    def _execute(self, handle: BatchHandle) -> BatchResult:
        """
        Send a batch until every operation has a terminal result.

        Whole-request transient failures resend the remaining operations;
        throttled items (429) are resent on their own. Both share one
        backoff state, so max_retries bounds the total number of resends.
        """
        batch = handle.batch
        results: List[Optional[OperationResult]] = [None] * batch.count
        pending = list(range(batch.count))
        backoff = self.retry_policy.new_state()
        took_ms = 0

        while True:
            if handle.cancel_requested:
                raise DispatchCancelled(f"Batch {batch.batch_id} cancelled")

            attempt = batch if len(pending) == batch.count else batch.subset(pending)
            try:
                response = self.transport.send_batch(attempt)
            except TransportTransient as e:
                delay = backoff.record_failure(e)
                logger.warning(
                    "[%s] batch %d: transient failure (%s), retry %d/%d in %.3fs",
                    self.name, batch.batch_id, e, backoff.attempt,
                    self.retry_policy.max_retries, delay
                )
                self._sleep(handle, delay)
                continue

            if len(response.items) != attempt.count:
                raise TransportFatal(
                    f"Transport returned {len(response.items)} results "
                    f"for {attempt.count} operations"
                )

            took_ms += response.took_ms or 0
            retry_positions = []
            for position, item in zip(pending, response.items):
                results[position] = item
                if item.retryable:
                    retry_positions.append(position)

            if not retry_positions:
                break

            try:
                delay = backoff.record_failure(
                    TransportTransient(f"{len(retry_positions)} operations throttled", status=429)
                )
            except RetryExhausted as exhausted:
                for position in retry_positions:
                    item = results[position]
                    results[position] = OperationResult(
                        item.operation,
                        status=item.status,
                        error=RetryExhausted(exhausted.attempts, item.error),
                    )
                break

            logger.warning(
                "[%s] batch %d: %d operations throttled, retry %d/%d in %.3fs",
                self.name, batch.batch_id, len(retry_positions), backoff.attempt,
                self.retry_policy.max_retries, delay
            )
            pending = _with_later_same_document(batch, results, retry_positions)
            self._sleep(handle, delay)

        return BatchResult(items=results, took_ms=took_ms)

    def _sleep(self, handle: BatchHandle, delay: float) -> None:
        # Cancellation interrupts the backoff wait
        if handle._cancel_requested.wait(delay):
            raise DispatchCancelled(f"Batch {handle.batch.batch_id} cancelled")

    def _on_future_done(self, handle: BatchHandle, future: Future) -> None:
        # Only batches cancelled while still queued need handling here;
        # everything else was finished by _run.
        if not future.cancelled():
            return
        batch = handle.batch
        error = DispatchCancelled(f"Batch {batch.batch_id} cancelled before dispatch")
        with self._lock:
            self.queued -= 1
        self._record_failure(batch)
        self._notify("on_batch_failure", batch, error)
        self.state.release(batch.size_in_bytes)
        handle._finish(None, error)

    def _record(self, result: BatchResult) -> None:
        failed = len(result.failed)
        with self._lock:
            self.batches_completed += 1
            self.operations_succeeded += len(result.items) - failed
            self.operations_failed += failed

    def _record_failure(self, batch: Batch) -> None:
        with self._lock:
            self.batches_failed += 1
            self.operations_failed += batch.count

    def _notify(self, hook: str, *args) -> None:
        try:
            getattr(self.listener, hook)(*args)
        except Exception:
            logger.exception("[%s] listener %s raised", self.name, hook)


def _with_later_same_document(batch: Batch, results: List[Optional[OperationResult]],
                              retry_positions: List[int]) -> List[int]:
    """
    Positions to resend for throttled items.

    A later operation on the same document that already succeeded is resent
    after the throttled one, so the document ends in its last enqueued state.
    Operations without an id target distinct documents and are never added.
    """
    first_throttled = {}
    for position in retry_positions:
        key = batch.operations[position].target_key
        if key[1] is not None:
            first_throttled.setdefault(key, position)

    positions = set(retry_positions)
    for position, op in enumerate(batch.operations):
        first = first_throttled.get(op.target_key)
        item = results[position]
        if first is not None and position > first and item is not None and item.ok:
            positions.add(position)
    return sorted(positions)
