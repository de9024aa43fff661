"""
esingest — Batching Bulk Writes for Elasticsearch
=================================================

A client-side bulk ingester: individual create/index/update/delete
operations are buffered, grouped into bulk requests by count, size and
time, sent with bounded concurrency, retried with exponential backoff on
throttling, and reported back per batch and per operation.

Key Features:
- Non-blocking add() from any number of threads
- Count / byte-size / interval flush triggers
- max_concurrent_requests in-flight bulk requests
- Per-item retry of throttled (429) operations
- close() flushes and waits, so nothing is dropped

Usage:
    from esingest import BulkIngester, IngesterConfig, Operation, build_client

    client = build_client(hosts=["http://localhost:9200"])
    with BulkIngester.for_client(client, IngesterConfig(max_operations=200)) as ingester:
        ingester.add(Operation.index_doc("my_index3", {"hello": "world!!!"}, id="1"))

Ordering:
    Operations on the same document are applied in enqueue order only with
    max_concurrent_requests=1 (the default).

License: MIT
"""

__version__ = "0.1.0"

from .buffer import BatchBuffer, PendingState
from .client import build_client
from .config import IngesterConfig
from .dispatcher import BatchHandle, Dispatcher
from .exceptions import (
    CapacityExceeded,
    ConfigError,
    DispatchCancelled,
    IngestError,
    IngesterClosed,
    OperationRejected,
    RetryExhausted,
    TransportFatal,
    TransportTransient,
)
from .ingester import BulkIngester
from .listener import CallbackResultListener, LoggingResultListener, ResultListener
from .operations import Batch, Operation, OpType
from .results import BatchOutcome, BatchResult, OperationResult
from .retry import BackoffState, RetryPolicy
from .scheduler import FlushScheduler
from .transport import ElasticsearchTransport, Transport, send_operations

__all__ = [
    "BulkIngester",
    "IngesterConfig",
    "Operation",
    "OpType",
    "Batch",
    "BatchBuffer",
    "PendingState",
    "FlushScheduler",
    "Dispatcher",
    "BatchHandle",
    "RetryPolicy",
    "BackoffState",
    "ResultListener",
    "LoggingResultListener",
    "CallbackResultListener",
    "BatchOutcome",
    "BatchResult",
    "OperationResult",
    "Transport",
    "ElasticsearchTransport",
    "send_operations",
    "build_client",
    "IngestError",
    "ConfigError",
    "CapacityExceeded",
    "IngesterClosed",
    "OperationRejected",
    "TransportTransient",
    "TransportFatal",
    "RetryExhausted",
    "DispatchCancelled",
]
