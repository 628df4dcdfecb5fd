"""
Process entry points.

    jindexer-indexer   -> run_indexer(): follow the chain and persist proofs
    jindexer-api       -> run_api(): serve queries, reports and metrics

The two run as separate processes sharing one database.
"""

import logging
import signal
import sys

import uvicorn

from jindexer.api.provider_cache import ProviderResolver
from jindexer.api.server import create_app
from jindexer.config import ApiSettings, ConfigError, IndexerSettings
from jindexer.indexer.chain_reader import TendermintRpcReader
from jindexer.indexer.pipeline import IngestionPipeline
from jindexer.indexer.retry import RetryPolicy
from jindexer.indexer.start_height import StartHeightError, resolve_start_height
from jindexer.indexer.tx_decoder import RestTxDecoder
from jindexer.log_setup import init_logging
from jindexer.monitoring.proof_metrics import MetricsAggregator
from jindexer.persistence import StoreError, open_store

logger = logging.getLogger("jindexer.main")


def run_indexer() -> int:
    init_logging("Starting JIndexer")

    try:
        settings = IndexerSettings.from_env()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    try:
        store = open_store(settings.database)
    except StoreError as e:
        logger.critical(f"Failed to open proof store: {e}")
        return 1

    reader = TendermintRpcReader(settings.rpc_url, timeout=settings.request_timeout)
    decoder = RestTxDecoder(settings.api_url, timeout=settings.request_timeout)

    try:
        start_height = resolve_start_height(settings.start_height, store, reader)
    except StartHeightError as e:
        logger.critical(str(e))
        store.close()
        return 1

    pipeline = IngestionPipeline(
        reader,
        decoder,
        store,
        poll_interval=settings.poll_interval,
        retry_policy=RetryPolicy(
            max_attempts=settings.fetch_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
    )

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping indexer")
        pipeline.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        pipeline.run(start_height, settings.end_height_or_none)
    finally:
        logger.info(f"Indexer stats: {pipeline.get_stats()}")
        reader.close()
        decoder.close()
        store.close()
    return 0


def run_api() -> int:
    init_logging("Starting API")

    try:
        settings = ApiSettings.from_env()
    except ConfigError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 1

    try:
        store = open_store(settings.database)
    except StoreError as e:
        logger.critical(f"Failed to open proof store: {e}")
        return 1

    resolver = ProviderResolver.for_api(settings.api_url, timeout=settings.request_timeout)
    aggregator = MetricsAggregator(store, interval=settings.metrics_interval)
    app = create_app(store, resolver, aggregator)

    logger.info(f"Starting API server on {settings.host}:{settings.port}")
    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    finally:
        resolver.close()
        store.close()
    return 0


if __name__ == "__main__":
    command = sys.argv[1] if len(sys.argv) > 1 else "indexer"
    sys.exit(run_api() if command == "api" else run_indexer())
