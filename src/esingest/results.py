"""
esingest Results — Per-Operation and Per-Batch Outcomes
=======================================================

A bulk response reports one item per operation. A batch can partially
fail: some items succeed while others are rejected or throttled.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from .exceptions import TransportTransient
from .operations import Operation


# Item statuses worth retrying on their own (throttled / rejected execution)
RETRYABLE_ITEM_STATUSES = frozenset({429})


class BatchOutcome(str, Enum):
    """Terminal state of a batch."""

    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


@dataclass
class OperationResult:
    """
    Outcome of a single operation.

    Attributes:
        operation: The operation this result belongs to
        status: HTTP status of the bulk item (None if never sent)
        result: Elasticsearch result string ("created", "updated", ...)
        error: Exception describing the failure, None on success
    """

    operation: Operation
    status: Optional[int] = None
    result: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def context(self) -> Any:
        return self.operation.context

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        """Throttled item that may succeed if sent again."""
        return isinstance(self.error, TransportTransient)


@dataclass
class BatchResult:
    """
    Outcome of one bulk request, items in batch order.

    Example:
        result = transport.send_batch(batch)
        if result.has_failures:
            print(result.failure_message())
    """

    items: List[OperationResult] = field(default_factory=list)
    took_ms: Optional[int] = None

    @property
    def has_failures(self) -> bool:
        return any(not item.ok for item in self.items)

    @property
    def succeeded(self) -> List[OperationResult]:
        return [item for item in self.items if item.ok]

    @property
    def failed(self) -> List[OperationResult]:
        return [item for item in self.items if not item.ok]

    @property
    def outcome(self) -> BatchOutcome:
        if not self.has_failures:
            return BatchOutcome.SUCCEEDED
        if self.succeeded:
            return BatchOutcome.PARTIALLY_FAILED
        return BatchOutcome.FAILED

    def failure_message(self) -> str:
        """One line per failed item, in the spirit of BulkResponse.buildFailureMessage()."""
        lines = ["failure in bulk execution:"]
        for position, item in enumerate(self.items):
            if item.ok:
                continue
            op = item.operation
            lines.append(
                f"[{position}]: index [{op.index}], id [{op.id}], "
                f"status [{item.status}], message [{item.error}]"
            )
        return "\n".join(lines)
