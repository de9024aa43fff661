"""Shared fixtures: an in-memory transport and a recording listener."""

import threading
import time
from typing import Callable, List, Optional

import pytest

from esingest import (
    Batch,
    BatchResult,
    OperationRejected,
    OperationResult,
    OpType,
    ResultListener,
    Transport,
    TransportTransient,
)


class FakeTransport(Transport):
    """
    Applies batches to a dict keyed by target key.

    failures: exceptions raised by successive send_batch calls
    item_status: (operation, call number) -> HTTP status for that item
    gate: when set, every send waits for it first
    """

    def __init__(
        self,
        failures: Optional[List[BaseException]] = None,
        item_status: Optional[Callable] = None,
        delay: float = 0.0
    ):
        self.lock = threading.Lock()
        self.store = {}
        self.sent: List[Batch] = []
        self.failures = list(failures or [])
        self.item_status = item_status
        self.delay = delay
        self.gate: Optional[threading.Event] = None
        self.active = 0
        self.max_active = 0
        self.closed = False

    @property
    def sent_operations(self):
        with self.lock:
            return [op for batch in self.sent for op in batch]

    def send_batch(self, batch: Batch) -> BatchResult:
        with self.lock:
            self.sent.append(batch)
            call = len(self.sent)
            failure = self.failures.pop(0) if self.failures else None
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)
            if failure is not None:
                raise failure
            return BatchResult(items=[self._apply(op, call) for op in batch], took_ms=1)
        finally:
            with self.lock:
                self.active -= 1

    def _apply(self, op, call) -> OperationResult:
        status = self.item_status(op, call) if self.item_status else 200
        if status == 429:
            return OperationResult(op, status=status, error=TransportTransient("rejected", 429))
        if status >= 300:
            return OperationResult(op, status=status, error=OperationRejected("bad", status))

        with self.lock:
            key = op.target_key
            if op.op_type in (OpType.INDEX, OpType.CREATE):
                self.store[key] = dict(op.payload)
            elif op.op_type is OpType.UPDATE:
                self.store.setdefault(key, {}).update(op.payload["doc"])
            else:
                self.store.pop(key, None)
        return OperationResult(op, status=status, result="created")

    def close(self):
        self.closed = True


class RecordingListener(ResultListener):
    def __init__(self):
        self.lock = threading.Lock()
        self.events = []
        self.successes = []
        self.failures = []

    def before_flush(self, batch):
        with self.lock:
            self.events.append(("before", batch.batch_id))

    def after_flush(self, batch):
        with self.lock:
            self.events.append(("after", batch.batch_id))

    def on_batch_success(self, batch, results):
        with self.lock:
            self.events.append(("success", batch.batch_id))
            self.successes.append((batch, results))

    def on_batch_failure(self, batch, error):
        with self.lock:
            self.events.append(("failure", batch.batch_id))
            self.failures.append((batch, error))


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def listener():
    return RecordingListener()
