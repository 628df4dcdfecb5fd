"""
JIndexer

Indexes storage-proof transactions from the Jackal chain into an append-only
audit log and serves compliance reports and freshness metrics over HTTP.

Components:
- IngestionPipeline: follows the chain, decodes txs, persists Block/Proof records
- ProofStore: append-only repository (sqlite or PostgreSQL)
- ReportEngine: 12-hour compliance windows over a date range
- MetricsAggregator: rolling proof freshness gauges for Prometheus
- ProviderResolver: cached provider address -> network location lookup
"""

__version__ = "0.1.0"
