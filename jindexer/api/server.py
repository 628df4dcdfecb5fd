"""
JIndexer Read API

Read-only HTTP surface over the proof store.

Endpoints:
- GET  /health              -> liveness
- GET  /query               -> proofs for one merkle in a date range (default: last 30 days)
- GET  /recent              -> newest proofs by block time
- GET  /proofs              -> newest proofs by insertion order
- GET  /provider/{address}  -> provider network location
- GET  /metrics             -> Prometheus exposition of proof freshness
- POST /report              -> 12-hour window compliance report

Client errors return 400 {"error": ...}; store failures return 500 with a
generic message and the cause logged.

Usage:
    app = create_app(store, resolver, aggregator)
    uvicorn.run(app, host="0.0.0.0", port=9797)
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from jindexer import __version__
from jindexer.api.provider_cache import ProviderLookupError, ProviderResolver
from jindexer.monitoring.proof_metrics import MetricsAggregator, build_registry
from jindexer.persistence.base import ProofStore, StoreError
from jindexer.reporting.windows import ReportEngine
from jindexer.timeutil import format_rfc3339, parse_rfc3339, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_QUERY_DAYS = 30


class ReportRequest(BaseModel):
    merkles: List[str]
    start_time: str
    end_time: str


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _parse_limit(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    limit = int(raw)  # ValueError on junk
    if limit < 1:
        raise ValueError("limit must be positive")
    return limit


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid request"


def create_app(
    store: ProofStore,
    resolver: ProviderResolver,
    aggregator: Optional[MetricsAggregator] = None,
    report_engine: Optional[ReportEngine] = None
) -> FastAPI:
    """Build the API around already opened collaborators."""
    aggregator = aggregator or MetricsAggregator(store)
    report_engine = report_engine or ReportEngine(store)
    registry = build_registry(aggregator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        aggregator.start()
        yield
        aggregator.stop()
        logger.info("API shut down")

    app = FastAPI(
        title="JIndexer API",
        version=__version__,
        description="Storage proof audit log and compliance reports",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.store = store
    app.state.resolver = resolver
    app.state.aggregator = aggregator
    app.state.report_engine = report_engine

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, _format_validation_error(exc))

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    def health_check():
        return {"status": "online", "version": __version__}

    @app.get("/query")
    def query_proofs(
        merkle: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None
    ):
        """Proofs for one merkle between start_date and end_date (inclusive)."""
        if not merkle:
            return _error(400, "merkle parameter is required")

        end_time = utc_now()
        start_time = end_time - timedelta(days=DEFAULT_QUERY_DAYS)

        if start_date:
            try:
                start_time = parse_rfc3339(start_date)
            except ValueError:
                return _error(400, "invalid start_date format, use RFC3339 (e.g., 2006-01-02T15:04:05Z)")
        if end_date:
            try:
                end_time = parse_rfc3339(end_date)
            except ValueError:
                return _error(400, "invalid end_date format, use RFC3339 (e.g., 2006-01-02T15:04:05Z)")

        try:
            proofs = store.list_proofs_by_merkle_and_time_range(merkle, start_time, end_time)
        except StoreError as e:
            logger.error(f"Failed to query proofs: {e}")
            return _error(500, "failed to query database")

        return {
            "merkle": merkle,
            "start_date": format_rfc3339(start_time),
            "end_date": format_rfc3339(end_time),
            "proofs": [p.to_dict() for p in proofs],
            "count": len(proofs),
        }

    @app.get("/recent")
    def recent_proofs(limit: Optional[str] = None):
        """Most recent proofs ordered by block time."""
        try:
            parsed = _parse_limit(limit)
        except ValueError:
            return _error(400, "invalid limit parameter, must be a positive integer")

        try:
            proofs = store.list_recent_proofs(parsed)
        except StoreError as e:
            logger.error(f"Failed to query recent proofs: {e}")
            return _error(500, "failed to query database")

        return {"limit": parsed, "proofs": [p.to_dict() for p in proofs], "count": len(proofs)}

    @app.get("/proofs")
    def list_proofs(limit: Optional[str] = None):
        """Most recent proofs ordered by insertion."""
        try:
            parsed = _parse_limit(limit)
        except ValueError:
            return _error(400, "invalid limit parameter, must be a positive integer")

        try:
            proofs = store.list_proofs_by_id(parsed)
        except StoreError as e:
            logger.error(f"Failed to query proofs: {e}")
            return _error(500, "failed to query database")

        return {"limit": parsed, "proofs": [p.to_dict() for p in proofs], "count": len(proofs)}

    @app.get("/provider/{address}")
    def provider_location(address: str):
        try:
            ip = resolver.get_provider_ip(address)
        except ProviderLookupError as e:
            logger.error(f"Failed to get provider IP for {address}: {e}")
            return _error(404, "provider not found", address=address)

        return {"address": address, "ip": ip}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    @app.post("/report")
    def proof_report(req: ReportRequest):
        if not req.merkles:
            return _error(400, "merkles must contain at least one merkle")

        try:
            start_time = parse_rfc3339(req.start_time)
        except ValueError:
            return _error(400, "invalid start_time format, use RFC3339")
        try:
            end_time = parse_rfc3339(req.end_time)
        except ValueError:
            return _error(400, "invalid end_time format, use RFC3339")

        if end_time < start_time:
            return _error(400, "end_time must be after start_time")

        try:
            report = report_engine.generate(req.merkles, start_time, end_time)
        except StoreError as e:
            logger.error(f"Failed to generate report: {e}")
            return _error(500, "failed to generate report")

        return report.to_dict()

    return app
