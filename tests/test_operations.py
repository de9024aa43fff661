"""Tests for operations, batches and bulk results."""

import json

import pytest

from conftest import FakeTransport
from esingest import (
    Batch,
    BatchOutcome,
    BatchResult,
    BulkIngester,
    IngesterConfig,
    Operation,
    OperationRejected,
    OperationResult,
    OpType,
)


class TestOperation:
    def test_index_doc_bulk_lines(self):
        op = Operation.index_doc("my_index3", {"hello": "world!!!"}, id="sHyzg4wB1VN7bxluoB4n")

        assert op.to_bulk_lines() == [
            {"index": {"_index": "my_index3", "_id": "sHyzg4wB1VN7bxluoB4n"}},
            {"hello": "world!!!"},
        ]

    def test_routing_in_header(self):
        op = Operation.index_doc("my_index3", {"n": 1}, id="my-id-1", routing="my-routing-1")

        assert op.to_bulk_lines()[0] == {
            "index": {"_index": "my_index3", "_id": "my-id-1", "routing": "my-routing-1"}
        }
        assert op.target_key == ("my_index3", "my-id-1", "my-routing-1")

    def test_create_without_id(self):
        op = Operation.create_doc("my_index3", {"field1": "client test5"})

        assert op.op_type is OpType.CREATE
        assert op.to_bulk_lines()[0] == {"create": {"_index": "my_index3"}}

    def test_update_wraps_doc(self):
        op = Operation.update_doc("my_index3", "rHyRg4wB1VN7bxluqh75",
                                  {"field1": "updated field!!!"}, doc_as_upsert=True)

        assert op.to_bulk_lines()[1] == {"doc": {"field1": "updated field!!!"}, "doc_as_upsert": True}

    def test_delete_has_no_body(self):
        op = Operation.delete_doc("my_index3", "42")

        assert op.to_bulk_lines() == [{"delete": {"_index": "my_index3", "_id": "42"}}]

    def test_string_op_type_is_normalized(self):
        op = Operation("index", "idx", "1", payload={"a": 1})
        assert op.op_type is OpType.INDEX

    def test_numeric_id_becomes_string(self):
        op = Operation.index_doc("idx", {"a": 1}, id=7)
        assert op.id == "7"

    def test_size_matches_ndjson(self):
        op = Operation.index_doc("idx", {"title": "Ünïcode"}, id="1")
        expected = sum(
            len(json.dumps(line, separators=(",", ":")).encode("utf-8")) + 1
            for line in op.to_bulk_lines()
        )
        assert op.size_in_bytes == expected

    @pytest.mark.parametrize("kwargs", [
        dict(op_type="upsert", index="idx", id="1", payload={}),
        dict(op_type="index", index="", id="1", payload={}),
        dict(op_type="update", index="idx", payload={"doc": {}}),
        dict(op_type="delete", index="idx"),
        dict(op_type="delete", index="idx", id="1", payload={"a": 1}),
        dict(op_type="index", index="idx", id="1"),
    ])
    def test_malformed_operations_rejected(self, kwargs):
        with pytest.raises(OperationRejected):
            Operation(**kwargs)

    def test_immutable(self):
        op = Operation.index_doc("idx", {"a": 1}, id="1")
        with pytest.raises(AttributeError):
            op.id = "2"

    def test_payload_copied_at_construction(self):
        doc = {"title": "Quantum", "tags": ["physics"]}
        op = Operation.index_doc("idx", doc, id="1")
        meta = {"seen": False}
        update = Operation.update_doc("idx", "1", {"meta": meta})
        size = op.size_in_bytes

        doc["title"] = "Changed after construction"
        doc["tags"].append("extra")
        meta["seen"] = True
        op.to_bulk_lines()[1]["tags"].append("from the caller")

        assert op.to_bulk_lines()[1] == {"title": "Quantum", "tags": ["physics"]}
        assert op.size_in_bytes == size
        assert update.to_bulk_lines()[1] == {"doc": {"meta": {"seen": False}}}

    def test_reused_dict_sent_as_it_was_when_added(self):
        transport = FakeTransport()
        doc = {}
        with BulkIngester(transport, IngesterConfig(max_operations=10)) as ingester:
            for n in range(3):
                doc["n"] = n
                ingester.add(Operation.index_doc("idx", doc, id=str(n)))

        assert [op.payload["n"] for op in transport.sent_operations] == [0, 1, 2]
        assert [body["n"] for body in transport.sent[0].to_bulk_body()[1::2]] == [0, 1, 2]


class TestBatch:
    def test_body_keeps_order(self):
        ops = (
            Operation.index_doc("idx", {"v": 1}, id="a"),
            Operation.delete_doc("idx", "b"),
            Operation.index_doc("idx", {"v": 2}, id="a"),
        )
        batch = Batch(1, ops)

        assert batch.count == 3
        assert batch.size_in_bytes == sum(op.size_in_bytes for op in ops)
        assert batch.to_bulk_body() == [
            {"index": {"_index": "idx", "_id": "a"}}, {"v": 1},
            {"delete": {"_index": "idx", "_id": "b"}},
            {"index": {"_index": "idx", "_id": "a"}}, {"v": 2},
        ]

    def test_subset(self):
        ops = tuple(Operation.index_doc("idx", {"n": n}, id=str(n), context=n) for n in range(4))
        sub = Batch(9, ops).subset([1, 3])

        assert sub.batch_id == 9
        assert sub.contexts == [1, 3]


class TestBatchResult:
    def _ops(self, n):
        return [Operation.index_doc("idx", {"n": i}, id=str(i)) for i in range(n)]

    def test_outcomes(self):
        a, b = self._ops(2)
        ok = BatchResult([OperationResult(a, 201), OperationResult(b, 200)])
        partial = BatchResult([OperationResult(a, 201), OperationResult(b, 400, error=OperationRejected("x"))])
        failed = BatchResult([OperationResult(a, 400, error=OperationRejected("x"))])

        assert ok.outcome is BatchOutcome.SUCCEEDED
        assert partial.outcome is BatchOutcome.PARTIALLY_FAILED
        assert failed.outcome is BatchOutcome.FAILED

    def test_failure_message(self):
        a, b = self._ops(2)
        result = BatchResult([
            OperationResult(a, 201),
            OperationResult(b, 400, error=OperationRejected("mapper_parsing_exception: bad")),
        ])

        message = result.failure_message()
        assert message.startswith("failure in bulk execution:")
        assert "[1]: index [idx], id [1], status [400]" in message
        assert "[0]" not in message
