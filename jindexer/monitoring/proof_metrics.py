"""
Proof Freshness Metrics

Periodically classifies every tracked merkle by the age of its newest proof
and exposes the result to Prometheus.

Classification (age = now - last proof time):
- healthy:  age <= 12h
- missed:   12h < age <= 24h
- critical: age > 24h

Each refresh builds a new immutable FreshnessSnapshot and swaps it in with a
single reference assignment. The Prometheus collector renders whatever
snapshot is current at scrape time, so a scrape sees one complete cycle and
the age histogram always describes current ages (it is rebuilt from the
snapshot, never accumulated across cycles).
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily, HistogramMetricFamily

from jindexer.persistence.base import FreshnessInputs, ProofStore, StoreError
from jindexer.timeutil import utc_now

PROOF_WINDOW_SECONDS = 12 * 60 * 60
CRITICAL_WINDOW_SECONDS = 24 * 60 * 60

# 1h, 2h, 3h, 4h, 6h, 12h, 18h, 24h, 48h
AGE_BUCKETS = (3600, 7200, 10800, 14400, 21600, 43200, 64800, 86400, 172800)


class Freshness(Enum):
    HEALTHY = "healthy"
    MISSED = "missed"
    CRITICAL = "critical"


def classify_age(age_seconds: float) -> Freshness:
    if age_seconds <= PROOF_WINDOW_SECONDS:
        return Freshness.HEALTHY
    if age_seconds <= CRITICAL_WINDOW_SECONDS:
        return Freshness.MISSED
    return Freshness.CRITICAL


@dataclass(frozen=True)
class FreshnessSnapshot:
    """One complete refresh cycle."""
    total_merkles: int = 0
    total_proofs: int = 0
    healthy: int = 0
    missed: int = 0
    critical: int = 0
    oldest_age: float = 0.0
    newest_age: float = 0.0
    ages: Dict[str, float] = field(default_factory=dict)
    refreshed_at: Optional[datetime] = None

    def bucket_counts(self, buckets: Tuple[float, ...] = AGE_BUCKETS):
        """Cumulative (upper bound, count) pairs for the age histogram."""
        values = list(self.ages.values())
        return [(bound, sum(1 for age in values if age <= bound)) for bound in buckets]

    def to_dict(self) -> Dict:
        return {
            "total_merkles": self.total_merkles,
            "total_proofs": self.total_proofs,
            "healthy": self.healthy,
            "missed": self.missed,
            "critical": self.critical,
            "oldest_age_seconds": self.oldest_age,
            "newest_age_seconds": self.newest_age,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }


def compute_snapshot(inputs: FreshnessInputs, now: datetime) -> FreshnessSnapshot:
    """Classify every merkle's newest proof relative to `now`."""
    ages: Dict[str, float] = {}
    counts = {Freshness.HEALTHY: 0, Freshness.MISSED: 0, Freshness.CRITICAL: 0}
    oldest: Optional[float] = None
    newest: Optional[float] = None

    for row in inputs.last_proofs:
        age = (now - row.last_proof_time).total_seconds()
        ages[row.merkle] = age
        counts[classify_age(age)] += 1

        if oldest is None or age > oldest:
            oldest = age
        if newest is None or age < newest:
            newest = age

    # Nothing tracked: publish zeros rather than an unset extreme
    return FreshnessSnapshot(
        total_merkles=len(ages),
        total_proofs=inputs.total_proofs,
        healthy=counts[Freshness.HEALTHY],
        missed=counts[Freshness.MISSED],
        critical=counts[Freshness.CRITICAL],
        oldest_age=oldest if oldest is not None else 0.0,
        newest_age=newest if newest is not None else 0.0,
        ages=ages,
        refreshed_at=now,
    )


class MetricsAggregator:
    """
    Owns the current FreshnessSnapshot and refreshes it on a fixed cadence.

    Usage:
        aggregator = MetricsAggregator(store)
        aggregator.start()        # eager refresh, then every 30s
        snap = aggregator.snapshot
        aggregator.stop()
    """

    REFRESH_INTERVAL = 30.0

    def __init__(
        self,
        store: ProofStore,
        interval: float = REFRESH_INTERVAL,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store
        self.interval = interval
        self._clock = clock
        self._logger = logging.getLogger("MetricsAggregator")

        self._snapshot = FreshnessSnapshot()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.refresh_count = 0
        self.refresh_failures = 0

    @property
    def snapshot(self) -> FreshnessSnapshot:
        return self._snapshot

    def refresh(self) -> Optional[FreshnessSnapshot]:
        """Run one cycle. On store failure the previous snapshot stays published."""
        try:
            inputs = self._store.read_freshness_inputs()
        except StoreError as e:
            self.refresh_failures += 1
            self._logger.error(f"Failed to refresh metrics from database: {e}")
            return None

        snapshot = compute_snapshot(inputs, self._clock())
        self._snapshot = snapshot
        self.refresh_count += 1

        self._logger.debug(
            f"Refreshed proof metrics: total_merkles={snapshot.total_merkles} "
            f"healthy={snapshot.healthy} missed={snapshot.missed} critical={snapshot.critical}"
        )
        return snapshot

    def _refresh_cycle(self):
        """One scheduled refresh. Never raises; the next tick retries."""
        try:
            self.refresh()
        except Exception as e:
            self.refresh_failures += 1
            self._logger.exception(f"Unexpected error refreshing proof metrics: {e}")

    def start(self):
        """Refresh once now, then keep refreshing on a background thread."""
        self._logger.info("Initializing proof metrics from database...")
        self._refresh_cycle()

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="metrics-refresh", daemon=True)
        self._thread.start()
        self._logger.info(f"Proof metrics refresh thread started ({self.interval:.0f}s interval)")

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    def _run(self):
        while not self._stop_event.wait(self.interval):
            self._refresh_cycle()


class ProofMetricsCollector:
    """Prometheus collector rendering the aggregator's current snapshot."""

    def __init__(self, aggregator: MetricsAggregator):
        self._aggregator = aggregator

    def collect(self):
        snap = self._aggregator.snapshot

        yield GaugeMetricFamily(
            "jindexer_merkles_total",
            "Total number of unique merkles being tracked",
            value=snap.total_merkles,
        )
        yield GaugeMetricFamily(
            "jindexer_proofs_total",
            "Total number of proofs indexed in the database",
            value=snap.total_proofs,
        )
        yield GaugeMetricFamily(
            "jindexer_merkles_healthy",
            "Number of merkles with proofs within the 12-hour window",
            value=snap.healthy,
        )
        yield GaugeMetricFamily(
            "jindexer_merkles_missed",
            "Number of merkles that have missed the 12-hour proof window",
            value=snap.missed,
        )
        yield GaugeMetricFamily(
            "jindexer_merkles_critical",
            "Number of merkles that have missed the 24-hour proof window (critical)",
            value=snap.critical,
        )

        buckets = [(str(float(bound)), count) for bound, count in snap.bucket_counts()]
        buckets.append(("+Inf", snap.total_merkles))
        yield HistogramMetricFamily(
            "jindexer_proof_age_seconds",
            "Histogram of proof ages in seconds",
            buckets=buckets,
            sum_value=sum(snap.ages.values()),
        )

        yield GaugeMetricFamily(
            "jindexer_oldest_proof_age_seconds",
            "Age of the oldest proof in seconds (worst case merkle)",
            value=snap.oldest_age,
        )
        yield GaugeMetricFamily(
            "jindexer_newest_proof_age_seconds",
            "Age of the most recent proof in seconds",
            value=snap.newest_age,
        )


def build_registry(aggregator: MetricsAggregator) -> CollectorRegistry:
    """Registry holding only the proof freshness metrics."""
    registry = CollectorRegistry()
    registry.register(ProofMetricsCollector(aggregator))
    return registry
