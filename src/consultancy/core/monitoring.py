"""Prometheus metrics, Sentry integration, and CRM call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- track_crm_call(): Context manager recording CRM request count and latency
- sync_outcomes_total / order_fulfillment_total: domain counters
- init_sentry(): Initialize Sentry for unhandled exceptions
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── CRM Metrics ──────────────────────────────────────────────────────────────

crm_requests_total = Counter(
    "crm_requests_total",
    "Total CRM adapter calls",
    ["operation", "outcome"],
)

crm_request_duration_seconds = Histogram(
    "crm_request_duration_seconds",
    "CRM adapter call duration in seconds (retries included)",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

sync_outcomes_total = Counter(
    "sync_outcomes_total",
    "Terminal sync states written by the sync engine",
    ["entity_type", "status"],
)

order_fulfillment_total = Counter(
    "order_fulfillment_total",
    "Orders placed, by fulfillment mode",
    ["mode"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Route pattern (set during routing) keeps ids out of the labels
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── CRM Metrics Helper ───────────────────────────────────────────────────────


@asynccontextmanager
async def track_crm_call(operation: str) -> AsyncGenerator[None, None]:
    """Context manager that tracks CRM call metrics.

    Usage:
        async with track_crm_call("upsert_contact"):
            contact = await self._request(...)

    Records duration in the histogram and a success/error count. The
    exception, if any, is re-raised unchanged.
    """
    start_time = time.perf_counter()
    outcome = "success"

    try:
        yield
    except Exception as exc:
        outcome = getattr(exc, "kind", "error")
        raise
    finally:
        crm_requests_total.labels(operation=operation, outcome=outcome).inc()
        crm_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
