"""Tests for the report data cache."""

import threading

import pytest

from kpiwatch.core.cache import ReportDataCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ReportDataCache(ttl_seconds=60, clock=clock)


class TestReportDataCache:
    def test_get_set(self, cache):
        cache.set("orders", "primary", [{"n": 1}])

        assert cache.get("orders", "primary") == [{"n": 1}]
        assert cache.get("orders", "secondary") is None

    def test_expiry(self, cache, clock):
        cache.set("orders", "primary", [1])
        clock.now += 61

        assert cache.get("orders", "primary") is None

    def test_invalidate_all_sources(self, cache):
        cache.set("orders", "primary", [1])
        cache.set("orders", "secondary", [2])
        cache.set("refunds", "primary", [3])

        cache.invalidate("orders")

        assert cache.get("orders", "primary") is None
        assert cache.get("orders", "secondary") is None
        assert cache.get("refunds", "primary") == [3]

    def test_preload_skips_fresh(self, cache):
        cache.set("orders", "primary", [1])

        assert cache.preload("orders", "primary", lambda: [2]) is False
        assert cache.get("orders", "primary") == [1]

    def test_preload_failure_is_swallowed(self, cache):
        def boom():
            raise RuntimeError("backend down")

        assert cache.preload("orders", "primary", boom) is False
        assert cache.get("orders", "primary") is None
        assert cache.preload("orders", "primary", lambda: [1]) is True

    def test_preload_can_raise(self, cache):
        def boom():
            raise RuntimeError("backend down")

        with pytest.raises(RuntimeError):
            cache.preload("orders", "primary", boom, raise_errors=True)
        assert cache.preload("orders", "primary", lambda: [1]) is True

    def test_preload_skips_in_flight(self, cache):
        started = threading.Event()
        release = threading.Event()

        def slow():
            started.set()
            release.wait(5)
            return [1]

        worker = threading.Thread(target=cache.preload, args=("orders", "primary", slow))
        worker.start()
        started.wait(5)

        assert cache.preload("orders", "primary", lambda: [2]) is False

        release.set()
        worker.join(5)
        assert cache.get("orders", "primary") == [1]

    def test_preload_then_get(self, cache):
        calls = []

        def loader():
            calls.append(1)
            return ["rows"]

        assert cache.preload("orders", "primary", loader) is True
        assert cache.preload("orders", "primary", loader) is False
        assert cache.get("orders", "primary") == ["rows"]
        assert len(calls) == 1
