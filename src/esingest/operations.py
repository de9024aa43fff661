"""
esingest Operations — Bulk Write Operations and Batches
=======================================================

An Operation is one logical write against an index. A Batch is the ordered
group of operations sent to the cluster in a single bulk request.

Bulk request format (NDJSON):
    {"index": {"_index": "my_index", "_id": "1", "routing": "r1"}}
    {"field1": "hello"}
    {"delete": {"_index": "my_index", "_id": "2"}}

Operations are immutable once built: the payload is copied at construction,
so later changes to the caller's dict are not sent. Operations sharing a
target key (index, id, routing) keep their relative order inside a batch.
"""

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import OperationRejected


TargetKey = Tuple[str, Optional[str], Optional[str]]


class OpType(str, Enum):
    """Bulk action types."""

    CREATE = "create"
    INDEX = "index"
    UPDATE = "update"
    DELETE = "delete"


def _encoded_size(line: Mapping[str, Any]) -> int:
    """Size of one NDJSON line in bytes, trailing newline included."""
    return len(json.dumps(line, separators=(",", ":"), default=str).encode("utf-8")) + 1


@dataclass(frozen=True)
class Operation:
    """
    One bulk write operation.

    Attributes:
        op_type: create, index, update or delete
        index: Target index name
        id: Document id (optional for create/index, required otherwise)
        routing: Optional routing value
        payload: Document source (create/index) or update body (update)
        context: Opaque caller token, echoed back in results

    Example:
        op = Operation.index_doc("my_index3", {"hello": "world"}, id="1")
        op.target_key   # ("my_index3", "1", None)
    """

    op_type: OpType
    index: str
    id: Optional[str] = None
    routing: Optional[str] = None
    payload: Optional[Mapping[str, Any]] = None
    context: Any = None
    size_in_bytes: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            op_type = OpType(self.op_type)
        except ValueError:
            raise OperationRejected(f"Unknown operation type: {self.op_type!r}")
        object.__setattr__(self, "op_type", op_type)

        if not self.index:
            raise OperationRejected(f"{op_type.value} operation requires an index")
        if op_type in (OpType.UPDATE, OpType.DELETE) and self.id is None:
            raise OperationRejected(f"{op_type.value} operation requires an id")
        if op_type is OpType.DELETE:
            if self.payload is not None:
                raise OperationRejected("delete operation takes no payload")
        elif self.payload is None:
            raise OperationRejected(f"{op_type.value} operation requires a payload")

        if self.id is not None:
            object.__setattr__(self, "id", str(self.id))
        if self.payload is not None:
            object.__setattr__(self, "payload", copy.deepcopy(dict(self.payload)))

        object.__setattr__(
            self, "size_in_bytes", sum(_encoded_size(line) for line in self.to_bulk_lines())
        )

    # Constructors mirroring the bulk actions

    @classmethod
    def index_doc(cls, index: str, document: Mapping[str, Any], id: Optional[str] = None,
                  routing: Optional[str] = None, context: Any = None) -> "Operation":
        """Index (create or replace) a document."""
        return cls(OpType.INDEX, index, id, routing, document, context)

    @classmethod
    def create_doc(cls, index: str, document: Mapping[str, Any], id: Optional[str] = None,
                   routing: Optional[str] = None, context: Any = None) -> "Operation":
        """Create a document, failing if it already exists."""
        return cls(OpType.CREATE, index, id, routing, document, context)

    @classmethod
    def update_doc(cls, index: str, id: str, doc: Mapping[str, Any],
                   routing: Optional[str] = None, doc_as_upsert: bool = False,
                   context: Any = None) -> "Operation":
        """Partially update a document with `doc`."""
        body: Dict[str, Any] = {"doc": dict(doc)}
        if doc_as_upsert:
            body["doc_as_upsert"] = True
        return cls(OpType.UPDATE, index, id, routing, body, context)

    @classmethod
    def delete_doc(cls, index: str, id: str, routing: Optional[str] = None,
                   context: Any = None) -> "Operation":
        """Delete a document."""
        return cls(OpType.DELETE, index, id, routing, None, context)

    @property
    def target_key(self) -> TargetKey:
        """The (index, id, routing) tuple identifying the affected document."""
        return (self.index, self.id, self.routing)

    def to_bulk_lines(self) -> List[Dict[str, Any]]:
        """Header line plus optional body line for the bulk API."""
        meta: Dict[str, Any] = {"_index": self.index}
        if self.id is not None:
            meta["_id"] = self.id
        if self.routing is not None:
            meta["routing"] = self.routing

        lines: List[Dict[str, Any]] = [{self.op_type.value: meta}]
        if self.payload is not None:
            lines.append(copy.deepcopy(self.payload))
        return lines


@dataclass(frozen=True)
class Batch:
    """
    An ordered, immutable group of operations sent in one bulk request.

    Attributes:
        batch_id: Execution id, increasing per ingester
        operations: Operations in enqueue order
    """

    batch_id: int
    operations: Tuple[Operation, ...]

    @property
    def count(self) -> int:
        return len(self.operations)

    @property
    def size_in_bytes(self) -> int:
        return sum(op.size_in_bytes for op in self.operations)

    @property
    def contexts(self) -> List[Any]:
        return [op.context for op in self.operations]

    def to_bulk_body(self) -> List[Dict[str, Any]]:
        """Flattened header/body lines for `Elasticsearch.bulk(operations=...)`."""
        body: List[Dict[str, Any]] = []
        for op in self.operations:
            body.extend(op.to_bulk_lines())
        return body

    def subset(self, positions: Iterable[int]) -> "Batch":
        """A batch with the same id holding only the operations at `positions`."""
        return Batch(self.batch_id, tuple(self.operations[i] for i in positions))

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)
