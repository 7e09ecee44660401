"""Tests for snapshot persistence, trends and retention."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from kpiwatch.core.snapshots.store import SnapshotStore

T0 = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def setup_db(tmp_db: Path):
    """Use tmp_db fixture from conftest for clean database per test."""
    yield


@pytest.fixture
def store():
    return SnapshotStore(max_per_pair=5)


def fill(store, values, entity_id=1, report_id="orders", start=T0):
    for i, value in enumerate(values):
        store.save_value(entity_id, report_id, value, now=start + timedelta(hours=i))


class TestSaveValue:
    def test_saves_and_returns_snapshot(self, store):
        snapshot = store.save_value(1, "orders", 42, row_count=3, execution_time_ms=12, now=T0)

        assert snapshot.id is not None
        assert snapshot.value == 42.0
        assert snapshot.captured_at == T0
        assert snapshot.source_kind == "cron"

    def test_min_interval_skips_recent(self, store):
        store.save_value(1, "orders", 1, now=T0)

        skipped = store.save_value(1, "orders", 2, min_interval_seconds=3600, now=T0 + timedelta(minutes=59))
        saved = store.save_value(1, "orders", 3, min_interval_seconds=3600, now=T0 + timedelta(hours=1))

        assert skipped is None
        assert saved is not None
        assert store.get_latest_value(1, "orders") == 3

    def test_keeps_newest_per_pair(self, store):
        fill(store, range(8))

        history = store.get_history(1, "orders", limit=50)

        assert [s.value for s in history] == [3, 4, 5, 6, 7]

    def test_pairs_are_independent(self, store):
        fill(store, [1, 2], report_id="orders")
        fill(store, [10], report_id="refunds")

        assert store.get_latest_value(1, "orders") == 2
        assert store.get_latest_value(1, "refunds") == 10
        assert store.get_latest_value(2, "orders") is None


class TestQueries:
    def test_latest_and_previous(self, store):
        fill(store, [10, 20, 30])

        assert store.get_latest_value(1, "orders") == 30
        assert store.get_previous_value(1, "orders") == 20

    def test_previous_needs_two_snapshots(self, store):
        fill(store, [10])

        assert store.get_previous_value(1, "orders") is None

    def test_same_timestamp_orders_by_id(self, store):
        store.save_value(1, "orders", 1, now=T0)
        store.save_value(1, "orders", 2, now=T0)

        assert store.get_latest_value(1, "orders") == 2

    def test_history_is_chronological(self, store):
        fill(store, [5, 6, 7])

        assert store.get_sparkline_data(1, "orders", points=2) == [6, 7]

    def test_statistics(self, store):
        fill(store, [10, 20, 45])

        stats = store.get_statistics(1, "orders")

        assert stats.count == 3
        assert stats.min == 10
        assert stats.max == 45
        assert stats.avg == 25.0
        assert stats.first_recorded == T0
        assert stats.last_recorded == T0 + timedelta(hours=2)

    def test_statistics_without_data(self, store):
        stats = store.get_statistics(1, "orders")

        assert stats.count == 0
        assert stats.avg is None


class TestTrend:
    def test_no_history(self, store):
        trend = store.calculate_trend(1, "orders", 10)

        assert trend.has_history is False
        assert trend.direction == "neutral"

    @pytest.mark.parametrize(
        "stored,current,direction,percentage",
        [
            (100, 125, "up", 25.0),
            (100, 80, "down", -20.0),
            (100, 100.4, "neutral", 0.4),
            (0, 5, "up", 100.0),
            (0, 0, "neutral", 0.0),
        ],
    )
    def test_direction(self, store, stored, current, direction, percentage):
        store.save_value(1, "orders", stored, now=T0)

        trend = store.calculate_trend(1, "orders", current)

        assert trend.direction == direction
        assert trend.percentage == pytest.approx(percentage)
        assert trend.previous_value == stored


class TestRetention:
    def test_cleanup_old(self, store):
        store.save_value(1, "orders", 1, now=T0 - timedelta(days=100))
        store.save_value(1, "orders", 2, now=T0)

        assert store.cleanup_old(retention_days=90, now=T0) == 1
        assert store.get_statistics(1, "orders").count == 1

    def test_delete_entity_history(self, store):
        fill(store, [1, 2], entity_id=1)
        fill(store, [3], entity_id=2)

        assert store.delete_entity_history(1) == 2
        assert store.get_latest_value(2, "orders") == 3
