from .proof_metrics import (
    AGE_BUCKETS,
    CRITICAL_WINDOW_SECONDS,
    PROOF_WINDOW_SECONDS,
    Freshness,
    FreshnessSnapshot,
    MetricsAggregator,
    ProofMetricsCollector,
    build_registry,
    classify_age,
    compute_snapshot,
)

__all__ = [
    "AGE_BUCKETS",
    "CRITICAL_WINDOW_SECONDS",
    "PROOF_WINDOW_SECONDS",
    "Freshness",
    "FreshnessSnapshot",
    "MetricsAggregator",
    "ProofMetricsCollector",
    "build_registry",
    "classify_age",
    "compute_snapshot",
]
