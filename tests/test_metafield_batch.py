"""
Tests for BatchAnnotator: ordering, partial failure, dry run, deadline.
"""

import random
import threading
import time

from conftest import FakeShopify
from metafield_batch import (
    STATUS_FAILURE,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    DEADLINE_IN_FLIGHT,
    DEADLINE_NOT_SENT,
    BatchAnnotator,
    MetafieldSpec,
    build_requests,
)
from shopify_rest import RestResponse

COUNTER = MetafieldSpec("custom", "demo_counter", "1", "number_integer")


def products(*ids):
    return [{"id": pid, "title": f"Product {pid}"} for pid in ids]


def test_payload_shape():
    assert COUNTER.payload() == {
        "metafield": {"namespace": "custom", "key": "demo_counter",
                      "value": "1", "type": "number_integer"}
    }


def test_one_request_per_item():
    reqs = build_requests(products(10, 11, 12), COUNTER)
    assert [r.path for r in reqs] == [
        "/products/10/metafields.json",
        "/products/11/metafields.json",
        "/products/12/metafields.json",
    ]


def test_all_writes_succeed():
    client = FakeShopify()
    result = BatchAnnotator(client, COUNTER, max_in_flight=3).annotate(products(10, 11, 12))

    assert result.status == STATUS_SUCCESS
    assert [o.item_id for o in result.outcomes] == [10, 11, 12]
    assert all(o.ok for o in result.outcomes)
    assert result.outcomes[0].response["metafield"]["owner_id"] == 10
    assert sorted(p for p, _ in client.post_calls) == [
        "/products/10/metafields.json",
        "/products/11/metafields.json",
        "/products/12/metafields.json",
    ]


def test_slots_follow_input_order_not_completion_order():
    ids = list(range(1, 21))
    rnd = random.Random(7)
    delays = {pid: rnd.uniform(0, 0.03) for pid in ids}
    client = FakeShopify(delays=delays)

    result = BatchAnnotator(client, COUNTER, max_in_flight=8).annotate(products(*ids))

    assert [o.item_id for o in result.outcomes] == ids
    assert [o.response["metafield"]["owner_id"] for o in result.outcomes] == ids


def test_one_failure_is_isolated():
    client = FakeShopify(fail_ids={11})
    result = BatchAnnotator(client, COUNTER, max_in_flight=3).annotate(products(10, 11, 12))

    assert result.status == STATUS_PARTIAL
    assert [o.ok for o in result.outcomes] == [True, False, True]
    assert "HTTP 422" in result.outcomes[1].error
    assert len(client.post_calls) == 3

    summary = result.summary()
    assert summary["succeeded"] == [10, 12]
    assert summary["failed"][0]["id"] == 11


def test_every_write_failing_is_total_failure():
    client = FakeShopify(fail_ids={1, 2})
    result = BatchAnnotator(client, COUNTER).annotate(products(1, 2))
    assert result.status == STATUS_FAILURE


def test_item_without_id_fails_alone():
    client = FakeShopify()
    items = [{"id": 5, "title": "ok"}, {"title": "no id"}]
    result = BatchAnnotator(client, COUNTER).annotate(items)

    assert [o.ok for o in result.outcomes] == [True, False]
    assert result.outcomes[1].error == "item has no id"
    assert len(client.post_calls) == 1


def test_in_flight_is_bounded():
    lock = threading.Lock()
    state = {"now": 0, "peak": 0}

    class CountingClient:
        def post(self, path, data, deadline=None):
            with lock:
                state["now"] += 1
                state["peak"] = max(state["peak"], state["now"])
            time.sleep(0.01)
            with lock:
                state["now"] -= 1
            return RestResponse(body={}, headers={})

    result = BatchAnnotator(CountingClient(), COUNTER, max_in_flight=2).annotate(products(*range(10)))
    assert result.status == STATUS_SUCCESS
    assert state["peak"] <= 2


def test_dry_run_sends_nothing():
    client = FakeShopify()
    result = BatchAnnotator(client, COUNTER, dry_run=True).annotate(products(1, 2))
    assert result.status == STATUS_SUCCESS
    assert client.post_calls == []


def test_empty_batch_is_success():
    result = BatchAnnotator(FakeShopify(), COUNTER).annotate([])
    assert result.outcomes == []
    assert result.status == STATUS_SUCCESS


def test_deadline_marks_pending_writes_failed():
    client = FakeShopify(delays={2: 0.5})
    deadline = time.monotonic() + 0.1
    result = BatchAnnotator(client, COUNTER, max_in_flight=2).annotate(products(1, 2), deadline=deadline)

    assert result.outcomes[0].ok is True
    assert result.outcomes[1].ok is False
    assert result.outcomes[1].error == DEADLINE_IN_FLIGHT
    assert result.status == STATUS_PARTIAL


def test_deadline_separates_unsent_from_in_flight_writes():
    client = FakeShopify(delays={1: 0.5})
    deadline = time.monotonic() + 0.1
    result = BatchAnnotator(client, COUNTER, max_in_flight=1).annotate(products(1, 2), deadline=deadline)

    assert [o.error for o in result.outcomes] == [DEADLINE_IN_FLIGHT, DEADLINE_NOT_SENT]
    assert result.status == STATUS_FAILURE
    time.sleep(0.7)
    assert [p for p, _ in client.post_calls] == ["/products/1/metafields.json"]


def test_deadline_is_passed_to_each_write():
    seen = []

    class RecordingClient:
        def post(self, path, data, deadline=None):
            seen.append(deadline)
            return RestResponse(body={}, headers={})

    deadline = time.monotonic() + 30
    BatchAnnotator(RecordingClient(), COUNTER).annotate(products(1, 2), deadline=deadline)
    assert seen == [deadline, deadline]
