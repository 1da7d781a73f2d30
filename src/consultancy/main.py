"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and CRM service wiring, and the
v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.consultancy.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.consultancy.api.v1.router import router as v1_router
from src.consultancy.config import get_settings
from src.consultancy.core.database import close_db, init_db
from src.consultancy.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.consultancy.services import build_services, load_stored_settings
from src.consultancy.sync.sweep import SyncSweepScheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    build_services(app, settings)
    await load_stored_settings(app)
    log.info("crm.initialized", configured=app.state.crm_client.is_configured())

    sweep: SyncSweepScheduler | None = None
    if settings.SYNC_SWEEP_ENABLED:
        sweep = SyncSweepScheduler(
            app.state.sync_engine,
            interval_minutes=settings.SYNC_SWEEP_INTERVAL_MINUTES,
        )
        sweep.start()
    app.state.sync_sweep = sweep

    yield

    if sweep is not None:
        sweep.stop()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Consultancy CRM Sync API",
        version="0.1.0",
        description="Contact, user and order synchronization with SuiteDash CRM",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
