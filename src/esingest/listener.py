"""
esingest Listener — Batch Result Reporting
==========================================

Callbacks invoked by the dispatcher for every batch:

    before_flush(batch)                   right before the first send
    on_batch_success(batch, results)      bulk request completed; items may
                                          still have failed individually
    on_batch_failure(batch, error)        whole batch failed (fatal error,
                                          retries exhausted, cancelled)
    after_flush(batch)                    always, after one of the above

Callbacks run on dispatcher threads. Exceptions raised by a listener are
logged and otherwise ignored.
"""

import logging
from typing import Callable, List, Optional

from .operations import Batch
from .results import OperationResult


logger = logging.getLogger(__name__)


class ResultListener:
    """No-op base listener. Override the hooks you need."""

    def before_flush(self, batch: Batch) -> None:
        pass

    def after_flush(self, batch: Batch) -> None:
        pass

    def on_batch_success(self, batch: Batch, results: List[OperationResult]) -> None:
        pass

    def on_batch_failure(self, batch: Batch, error: BaseException) -> None:
        pass


class LoggingResultListener(ResultListener):
    """Logs every batch outcome and each failed operation."""

    def __init__(self, name: str = "esingest", log: Optional[logging.Logger] = None):
        self.name = name
        self.log = log or logger

    def before_flush(self, batch: Batch) -> None:
        self.log.debug(
            "[%s] sending batch %d: %d operations, %d bytes",
            self.name, batch.batch_id, batch.count, batch.size_in_bytes
        )

    def on_batch_success(self, batch: Batch, results: List[OperationResult]) -> None:
        failed = [r for r in results if not r.ok]
        if not failed:
            self.log.info("[%s] batch %d succeeded (%d operations)",
                          self.name, batch.batch_id, len(results))
            return
        self.log.warning("[%s] batch %d partially failed: %d of %d operations failed",
                         self.name, batch.batch_id, len(failed), len(results))
        for r in failed:
            self.log.warning("[%s]   context=%r status=%s error=%s",
                             self.name, r.context, r.status, r.error)

    def on_batch_failure(self, batch: Batch, error: BaseException) -> None:
        self.log.error("[%s] batch %d failed (%d operations): %s",
                       self.name, batch.batch_id, batch.count, error)


class CallbackResultListener(ResultListener):
    """
    Listener built from plain callables.

    Example:
        listener = CallbackResultListener(
            on_success=lambda batch, results: print(len(results)),
            on_failure=lambda batch, error: print(error),
        )
    """

    def __init__(
        self,
        on_success: Optional[Callable[[Batch, List[OperationResult]], None]] = None,
        on_failure: Optional[Callable[[Batch, BaseException], None]] = None,
        before: Optional[Callable[[Batch], None]] = None,
        after: Optional[Callable[[Batch], None]] = None
    ):
        self._on_success = on_success
        self._on_failure = on_failure
        self._before = before
        self._after = after

    def before_flush(self, batch: Batch) -> None:
        if self._before:
            self._before(batch)

    def after_flush(self, batch: Batch) -> None:
        if self._after:
            self._after(batch)

    def on_batch_success(self, batch: Batch, results: List[OperationResult]) -> None:
        if self._on_success:
            self._on_success(batch, results)

    def on_batch_failure(self, batch: Batch, error: BaseException) -> None:
        if self._on_failure:
            self._on_failure(batch, error)

