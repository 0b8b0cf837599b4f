"""
Tests for RequestCoalescer.
"""
import threading

import pytest

from app.cache import CacheSource, RequestCoalescer
from app.cache.coalescer import MISSING
from conftest import wait_for


class Interrupted(BaseException):
    pass


def test_lookup_hit_skips_fetch():
    coalescer = RequestCoalescer()

    value, source = coalescer.get_or_fetch(
        "courses:fsu",
        fetch_fn=lambda: pytest.fail("should not fetch"),
        lookup=lambda: ["course 1"],
    )

    assert value == ["course 1"]
    assert source is CacheSource.FRESH
    assert coalescer.active_requests == 0


def test_lookup_miss_fetches_and_stores_before_release():
    coalescer = RequestCoalescer()
    stored = []

    def on_result(value):
        # Still registered while the result is being stored
        stored.append((value, coalescer.is_pending("k")))

    value, source = coalescer.get_or_fetch(
        "k", lambda: "v", lookup=lambda: MISSING, on_result=on_result,
    )

    assert (value, source) == ("v", CacheSource.UPSTREAM)
    assert stored == [("v", True)]
    assert not coalescer.is_pending("k")


def test_waiter_shares_initiator_result():
    coalescer = RequestCoalescer()
    release = threading.Event()
    results = []

    def fetch():
        release.wait(5)
        return "shared"

    initiator = threading.Thread(
        target=lambda: results.append(coalescer.get_or_fetch("k", fetch))
    )
    initiator.start()
    assert wait_for(lambda: coalescer.is_pending("k"))

    waiter = threading.Thread(
        target=lambda: results.append(coalescer.get_or_fetch("k", fetch))
    )
    waiter.start()
    assert wait_for(lambda: coalescer._in_flight["k"].waiter_count == 1)
    release.set()
    initiator.join(5)
    waiter.join(5)

    assert sorted(source.value for _, source in results) == ["shared", "upstream"]
    assert all(value == "shared" for value, _ in results)
    assert coalescer.get_stats() == {"active_requests": 0, "active_keys": []}


def test_interrupted_fetch_clears_registry():
    coalescer = RequestCoalescer()

    def fetch():
        raise Interrupted()

    with pytest.raises(Interrupted):
        coalescer.get_or_fetch("k", fetch)

    assert not coalescer.is_pending("k")
    assert coalescer.get_or_fetch("k", lambda: "retry") == ("retry", CacheSource.UPSTREAM)


def test_failed_store_is_reported_as_fetch_failure():
    coalescer = RequestCoalescer()

    def on_result(value):
        raise RuntimeError("store failed")

    with pytest.raises(RuntimeError):
        coalescer.get_or_fetch("k", lambda: "v", on_result=on_result)

    assert coalescer.active_requests == 0
