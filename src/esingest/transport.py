"""
esingest Transport — Sending Batches to Elasticsearch
=====================================================

The batching layer talks to the cluster through one narrow call:

    transport.send_batch(batch) -> BatchResult

ElasticsearchTransport implements it with the official client's bulk API.
Failures are mapped onto the esingest error taxonomy:

    connection errors, timeouts           -> TransportTransient
    HTTP 429 / 502 / 503 / 504            -> TransportTransient
    any other API error                   -> TransportFatal
    item status 429 (rejected execution)  -> retryable item
    item status 4xx / 5xx                 -> OperationRejected item
"""

import logging
from typing import Any, Iterable, List, Optional

from elasticsearch import ApiError, ConnectionTimeout, Elasticsearch
from elasticsearch import ConnectionError as ESConnectionError

from .exceptions import OperationRejected, TransportFatal, TransportTransient
from .operations import Batch, Operation
from .results import RETRYABLE_ITEM_STATUSES, BatchResult, OperationResult


logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


class Transport:
    """Interface of anything that can execute a batch."""

    def send_batch(self, batch: Batch) -> BatchResult:
        """
        Execute one batch.

        Returns:
            BatchResult with one OperationResult per operation, in order

        Raises:
            TransportTransient: retryable failure of the whole request
            TransportFatal: non-retryable failure of the whole request
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


class ElasticsearchTransport(Transport):
    """
    Transport backed by `Elasticsearch.bulk`.

    Example:
        client = build_client(hosts=["http://localhost:9200"])
        transport = ElasticsearchTransport(client)
        result = transport.send_batch(batch)
    """

    def __init__(
        self,
        client: Elasticsearch,
        refresh: Optional[str] = None,
        owns_client: bool = False,
        **bulk_kwargs: Any
    ):
        """
        Args:
            client: Elasticsearch client to send with
            refresh: Bulk refresh parameter ("true", "false", "wait_for")
            owns_client: Close the client when the transport is closed
            bulk_kwargs: Extra keyword arguments for every bulk call
        """
        self._client = client
        self.refresh = refresh
        self.owns_client = owns_client
        self.bulk_kwargs = bulk_kwargs

    @property
    def client(self) -> Elasticsearch:
        return self._client

    def send_batch(self, batch: Batch) -> BatchResult:
        kwargs = dict(self.bulk_kwargs)
        if self.refresh is not None:
            kwargs["refresh"] = self.refresh

        try:
            response = self._client.bulk(operations=batch.to_bulk_body(), **kwargs)
        except (ESConnectionError, ConnectionTimeout) as e:
            raise TransportTransient(f"Connection failure: {e}") from e
        except ApiError as e:
            status = e.status_code
            if status in TRANSIENT_STATUSES:
                raise TransportTransient(f"Bulk request throttled: {e}", status=status) from e
            raise TransportFatal(f"Bulk request failed: {e}", status=status) from e

        body = getattr(response, "body", response)
        return parse_bulk_response(batch, body)

    def close(self) -> None:
        if self.owns_client:
            self._client.close()


def parse_bulk_response(batch: Batch, body: dict) -> BatchResult:
    """
    Match bulk response items to the batch operations by position.

    Raises:
        TransportFatal: when the response does not list one item per operation
    """
    items = body.get("items", [])
    if len(items) != batch.count:
        raise TransportFatal(
            f"Bulk response has {len(items)} items for {batch.count} operations"
        )

    results: List[OperationResult] = []
    for op, item in zip(batch.operations, items):
        # Each item is {"<op_type>": {...}}
        info = next(iter(item.values()))
        results.append(_item_result(op, info))

    return BatchResult(items=results, took_ms=body.get("took"))


def _item_result(op: Operation, info: dict) -> OperationResult:
    status = info.get("status")
    error = info.get("error")

    if error is None and status is not None and 200 <= status < 300:
        return OperationResult(op, status=status, result=info.get("result"))

    if isinstance(error, dict):
        message = f"{error.get('type')}: {error.get('reason')}"
    else:
        message = str(error)

    if status in RETRYABLE_ITEM_STATUSES:
        failure: BaseException = TransportTransient(message, status=status)
    else:
        failure = OperationRejected(
            message, status=status, reason=error if isinstance(error, dict) else None
        )
    return OperationResult(op, status=status, result=info.get("result"), error=failure)


def send_operations(transport: Transport, operations: Iterable[Operation]) -> BatchResult:
    """
    Send operations as a single bulk request, without buffering or retries.

    Example:
        result = send_operations(transport, [
            Operation.update_doc("my_index3", "rHyRg4wB1VN7bxluqh75",
                                 {"field1": "updated field!!!"}),
        ])
        if result.has_failures:
            print(result.failure_message())
    """
    batch = Batch(0, tuple(operations))
    if not batch.count:
        return BatchResult()
    result = transport.send_batch(batch)
    if result.has_failures:
        logger.warning(result.failure_message())
    return result
