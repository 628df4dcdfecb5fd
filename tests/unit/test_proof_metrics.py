"""
Unit tests for proof freshness metrics.

Tests:
- Age classification thresholds
- Snapshot computation (counts, extremes, empty store)
- Aggregator refresh and failure handling
- Prometheus exposition
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from prometheus_client import generate_latest
from psycopg2.pool import PoolError

from jindexer.monitoring import (
    Freshness,
    FreshnessSnapshot,
    MetricsAggregator,
    build_registry,
    classify_age,
    compute_snapshot,
)
from jindexer.persistence.base import FreshnessInputs, StoreError
from jindexer.types import MerkleLastProof

NOW = datetime(2025, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
H = 3600


def inputs_with_ages(ages_hours, total_proofs=None):
    rows = [
        MerkleLastProof(merkle=f"m{i}", last_proof_time=NOW - timedelta(hours=age))
        for i, age in enumerate(ages_hours)
    ]
    return FreshnessInputs(last_proofs=rows, total_proofs=total_proofs or len(rows))


class TestClassification:

    @pytest.mark.parametrize("age,expected", [
        (0, Freshness.HEALTHY),
        (12 * H, Freshness.HEALTHY),
        (12 * H + 1, Freshness.MISSED),
        (24 * H, Freshness.MISSED),
        (24 * H + 1, Freshness.CRITICAL),
        (72 * H, Freshness.CRITICAL),
    ])
    def test_thresholds(self, age, expected):
        assert classify_age(age) is expected


class TestComputeSnapshot:

    def test_mixed_ages(self):
        """13h, 25h and 1h old merkles: one of each class."""
        snap = compute_snapshot(inputs_with_ages([13, 25, 1], total_proofs=10), NOW)

        assert snap.total_merkles == 3
        assert snap.total_proofs == 10
        assert (snap.healthy, snap.missed, snap.critical) == (1, 1, 1)
        assert snap.oldest_age == 25 * H
        assert snap.newest_age == 1 * H

    def test_classes_sum_to_total(self):
        snap = compute_snapshot(inputs_with_ages([0.5, 6, 11, 12, 18, 23, 30, 100]), NOW)
        assert snap.healthy + snap.missed + snap.critical == snap.total_merkles

    def test_empty_store(self):
        """No merkles: everything is zero, including the newest age."""
        snap = compute_snapshot(FreshnessInputs(last_proofs=[], total_proofs=0), NOW)

        assert snap.total_merkles == 0
        assert snap.oldest_age == 0.0
        assert snap.newest_age == 0.0
        assert snap.bucket_counts()[-1] == (172800, 0)

    def test_bucket_counts_cumulative(self):
        snap = compute_snapshot(inputs_with_ages([0.5, 5, 30]), NOW)
        counts = dict(snap.bucket_counts())

        assert counts[3600] == 1
        assert counts[21600] == 2
        assert counts[86400] == 2
        assert counts[172800] == 3


class TestAggregator:

    def test_refresh_publishes_snapshot(self):
        store = MagicMock()
        store.read_freshness_inputs.return_value = inputs_with_ages([1, 13])
        aggregator = MetricsAggregator(store, clock=lambda: NOW)

        snap = aggregator.refresh()

        assert aggregator.snapshot is snap
        assert snap.refreshed_at == NOW
        assert aggregator.refresh_count == 1

    def test_failed_refresh_keeps_previous(self):
        store = MagicMock()
        store.read_freshness_inputs.return_value = inputs_with_ages([1])
        aggregator = MetricsAggregator(store, clock=lambda: NOW)
        first = aggregator.refresh()

        store.read_freshness_inputs.side_effect = StoreError("db down")

        assert aggregator.refresh() is None
        assert aggregator.snapshot is first
        assert aggregator.refresh_failures == 1

    def test_ages_not_accumulated_across_cycles(self):
        store = MagicMock()
        store.read_freshness_inputs.return_value = inputs_with_ages([1, 2, 3])
        aggregator = MetricsAggregator(store, clock=lambda: NOW)
        aggregator.refresh()
        aggregator.refresh()

        assert len(aggregator.snapshot.ages) == 3

    def test_start_refreshes_eagerly(self):
        store = MagicMock()
        store.read_freshness_inputs.return_value = inputs_with_ages([2])
        aggregator = MetricsAggregator(store, interval=3600, clock=lambda: NOW)

        aggregator.start()
        try:
            assert aggregator.snapshot.total_merkles == 1
        finally:
            aggregator.stop()

    def test_initial_snapshot_empty(self):
        aggregator = MetricsAggregator(MagicMock())
        assert aggregator.snapshot == FreshnessSnapshot()


class TestExposition:

    def test_metric_names_and_values(self):
        store = MagicMock()
        store.read_freshness_inputs.return_value = inputs_with_ages([13, 25, 1], total_proofs=7)
        aggregator = MetricsAggregator(store, clock=lambda: NOW)
        aggregator.refresh()

        text = generate_latest(build_registry(aggregator)).decode()

        assert "jindexer_merkles_total 3.0" in text
        assert "jindexer_proofs_total 7.0" in text
        assert "jindexer_merkles_healthy 1.0" in text
        assert "jindexer_merkles_missed 1.0" in text
        assert "jindexer_merkles_critical 1.0" in text
        assert 'jindexer_proof_age_seconds_bucket{le="3600.0"} 1.0' in text
        assert 'jindexer_proof_age_seconds_bucket{le="+Inf"} 3.0' in text
        assert "jindexer_proof_age_seconds_count 3.0" in text
        assert "jindexer_oldest_proof_age_seconds 90000.0" in text
        assert "jindexer_newest_proof_age_seconds 3600.0" in text


class TestRefreshThreadResilience:
    """Unexpected store errors must not end the refresh cadence."""

    def test_unexpected_error_does_not_stop_refreshing(self):
        calls = []

        def read_inputs():
            calls.append(1)
            if len(calls) == 2:
                raise PoolError("connection pool exhausted")
            return inputs_with_ages([1])

        store = MagicMock()
        store.read_freshness_inputs.side_effect = read_inputs
        aggregator = MetricsAggregator(store, interval=0.02, clock=lambda: NOW)

        aggregator.start()
        try:
            deadline = time.time() + 5
            while aggregator.refresh_count < 3 and time.time() < deadline:
                time.sleep(0.01)
            assert aggregator._thread.is_alive()
        finally:
            aggregator.stop()

        assert aggregator.refresh_count >= 3
        assert aggregator.refresh_failures == 1
        assert aggregator.snapshot.total_merkles == 1

    def test_unexpected_error_on_startup_keeps_empty_snapshot(self):
        store = MagicMock()
        store.read_freshness_inputs.side_effect = RuntimeError("boom")
        aggregator = MetricsAggregator(store, interval=3600, clock=lambda: NOW)

        aggregator.start()
        aggregator.stop()

        assert aggregator.snapshot == FreshnessSnapshot()
        assert aggregator.refresh_failures == 1
