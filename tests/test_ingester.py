"""End-to-end tests for BulkIngester against an in-memory transport."""

import random
import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import FakeTransport, RecordingListener, wait_for
from esingest import (
    BulkIngester,
    CapacityExceeded,
    ElasticsearchTransport,
    IngesterClosed,
    IngesterConfig,
    Operation,
    TransportTransient,
)


def op(n, index="my_index3", **payload):
    return Operation.index_doc(index, payload or {"n": n}, id=f"my-id-{n}", context=f"my-context-{n}")


def test_five_operations_with_max_three(transport, listener):
    ingester = BulkIngester(transport, IngesterConfig(max_operations=3), listener)
    for n in range(5):
        ingester.add(op(n))

    assert wait_for(lambda: len(transport.sent) == 1)
    assert ingester.current_count == 2

    ingester.close()

    assert [b.count for b in transport.sent] == [3, 2]
    assert [len(results) for _, results in listener.successes] == [3, 2]
    assert [e for e in listener.events if e[0] == "before"] == [("before", 1), ("before", 2)]


def test_close_flushes_everything_below_threshold(transport, listener):
    ingester = BulkIngester(transport, IngesterConfig(max_operations=1000), listener)
    for n in range(7):
        ingester.add(op(n))
    assert transport.sent == []

    ingester.close()

    assert len(transport.sent_operations) == 7
    assert ingester.stats()["operations_succeeded"] == 7
    assert ingester.stats()["pending_bytes"] == 0


def test_size_threshold_triggers_flush(transport):
    size = op(1).size_in_bytes
    config = IngesterConfig(max_operations=1000, max_bytes=size * 2)
    ingester = BulkIngester(transport, config)

    ingester.add(op(1))
    assert transport.sent == []
    ingester.add(op(2))

    assert wait_for(lambda: len(transport.sent) == 1)
    ingester.close()
    assert transport.sent[0].count == 2


def test_time_trigger_flushes_within_interval(transport, listener):
    ingester = BulkIngester(transport, IngesterConfig(flush_interval_ms=50), listener)
    start = time.monotonic()
    ingester.add(op(1))

    assert wait_for(lambda: len(transport.sent) == 1, timeout=2)
    elapsed = time.monotonic() - start
    ingester.close()

    assert elapsed < 1.0
    assert len(transport.sent) == 1


def test_time_trigger_with_empty_buffer_sends_nothing(transport):
    ingester = BulkIngester(transport, IngesterConfig(flush_interval_ms=20))
    time.sleep(0.15)
    ingester.close()

    assert transport.sent == []


def test_manual_flush(transport):
    ingester = BulkIngester(transport, IngesterConfig(max_operations=100))
    assert ingester.flush() is None

    ingester.add(op(1))
    handle = ingester.flush()
    result = handle.result(timeout=5)
    ingester.close()

    assert result.items[0].context == "my-context-1"


def test_same_document_applied_in_enqueue_order(transport):
    # One operation per batch so the two writes land in different requests
    ingester = BulkIngester(transport, IngesterConfig(max_operations=1, max_concurrent_requests=1))
    transport.delay = 0.02

    ingester.add(Operation.index_doc("my_index3", {"value": "first"}, id="same"))
    ingester.add(Operation.index_doc("my_index3", {"value": "second"}, id="same"))
    ingester.close()

    assert transport.store[("my_index3", "same", None)] == {"value": "second"}
    assert [o.payload["value"] for o in transport.sent_operations] == ["first", "second"]


def test_update_and_delete_flow(transport):
    with BulkIngester(transport, IngesterConfig(max_operations=2)) as ingester:
        ingester.add(Operation.index_doc("my_index3", {"field1": "hello", "field2": "world"}, id="r1"))
        ingester.add(Operation.update_doc("my_index3", "r1", {"field1": "updated field!!!"}))
        ingester.add(Operation.index_doc("my_index3", {"x": 1}, id="r2"))
        ingester.add(Operation.delete_doc("my_index3", "r2"))

    assert transport.store == {
        ("my_index3", "r1", None): {"field1": "updated field!!!", "field2": "world"}
    }


def test_total_dispatched_equals_successful_adds():
    rng = random.Random(1234)
    transport = FakeTransport()
    config = IngesterConfig(max_operations=7, max_bytes=600, flush_interval_ms=10,
                            max_concurrent_requests=3)
    ingester = BulkIngester(transport, config)

    added = []
    lock = threading.Lock()

    def produce(worker):
        for n in range(200):
            payload = {"blob": "x" * rng.randint(0, 120)}
            operation = Operation.index_doc("idx", payload, id=f"{worker}-{n}", context=(worker, n))
            ingester.add(operation)
            with lock:
                added.append(operation.context)
            if n % 50 == 0:
                time.sleep(0.01)

    threads = [threading.Thread(target=produce, args=(w,)) for w in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    ingester.close()

    sent = [o.context for o in transport.sent_operations]
    assert len(sent) == len(added) == 800
    assert sorted(sent) == sorted(added)
    assert all(b.count <= 7 for b in transport.sent)
    assert transport.max_active <= 3


def test_capacity_exceeded_then_recovers():
    transport = FakeTransport()
    transport.gate = threading.Event()
    size = op(1).size_in_bytes
    config = IngesterConfig(max_operations=1, max_bytes=size, max_pending_bytes=size * 2)
    ingester = BulkIngester(transport, config)

    ingester.add(op(1))
    ingester.add(op(2))
    with pytest.raises(CapacityExceeded):
        ingester.add(op(3))
    assert ingester.stats()["operations_added"] == 2

    transport.gate.set()
    assert wait_for(lambda: ingester.stats()["pending_bytes"] == 0)
    ingester.add(op(3))
    ingester.close()

    assert [o.context for o in transport.sent_operations] == [
        "my-context-1", "my-context-2", "my-context-3"
    ]


def test_add_after_close(transport):
    ingester = BulkIngester(transport)
    ingester.close()

    with pytest.raises(IngesterClosed):
        ingester.add(op(1))
    with pytest.raises(IngesterClosed):
        with ingester:
            pass


def test_close_is_idempotent(transport):
    ingester = BulkIngester(transport, owns_transport=True)
    ingester.add(op(1))
    ingester.close()
    ingester.close()

    assert len(transport.sent) == 1
    assert transport.closed


def test_close_completes_after_failures(listener):
    transport = FakeTransport(failures=[TransportTransient("busy")] * 3)
    config = IngesterConfig(max_operations=1, max_retries=1, backoff_base_ms=1, backoff_cap_ms=1)
    ingester = BulkIngester(transport, config, listener)

    for n in range(3):
        ingester.add(op(n))
    ingester.close()

    # Batch 1 exhausts its retries; the rest go through
    assert len(listener.failures) == 1
    assert len(listener.successes) == 2
    stats = ingester.stats()
    assert stats["operations_failed"] == 1
    assert stats["operations_succeeded"] == 2
    assert stats["in_flight"] == 0


def test_every_operation_reported_once(listener):
    transport = FakeTransport(item_status=lambda o, call: 400 if o.id.endswith("3") else 201)
    with BulkIngester(transport, IngesterConfig(max_operations=4), listener) as ingester:
        for n in range(10):
            ingester.add(op(n))

    reported = [r.context for _, results in listener.successes for r in results]
    assert sorted(reported) == sorted(f"my-context-{n}" for n in range(10))
    failed = [r.context for _, results in listener.successes for r in results if not r.ok]
    assert failed == ["my-context-3"]


def test_for_client_wraps_elasticsearch_client():
    client = MagicMock()
    client.bulk.return_value = {
        "took": 2,
        "errors": False,
        "items": [{"index": {"_id": "my-id-1", "status": 201, "result": "created"}}],
    }

    ingester = BulkIngester.for_client(client, refresh="wait_for")
    assert isinstance(ingester.transport, ElasticsearchTransport)
    ingester.add(op(1))
    ingester.close()

    client.bulk.assert_called_once()
    assert client.bulk.call_args.kwargs["refresh"] == "wait_for"
    client.close.assert_not_called()
