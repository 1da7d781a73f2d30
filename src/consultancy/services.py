"""Service wiring for app.state.

build_services creates the repositories once. install_crm (re)builds
everything that holds a CRM client (the client itself, SyncEngine,
FulfillmentOrchestrator, OrderService) and is called again whenever an admin
saves new SuiteDash settings, so a configuration change takes effect without
a restart. Clients are never mutated; a settings change always yields a new
client.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial

import structlog
from fastapi import FastAPI

from src.consultancy.config import Settings
from src.consultancy.core.database import get_session
from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.suitedash import SuiteDashClient
from src.consultancy.integrations.repository import IntegrationSettingsRepository
from src.consultancy.integrations.schemas import SuiteDashSettings
from src.consultancy.orders.fulfillment import FulfillmentOrchestrator
from src.consultancy.orders.repository import OrderRepository
from src.consultancy.orders.service import OrderService
from src.consultancy.sync.engine import SyncEngine
from src.consultancy.sync.repository import SyncRepository

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[SuiteDashSettings], CRMClient]


def build_services(
    app: FastAPI,
    settings: Settings,
    *,
    client: CRMClient | None = None,
    client_factory: ClientFactory | None = None,
    sync_repository: object | None = None,
    order_repository: object | None = None,
    integration_repository: object | None = None,
) -> None:
    """Wire repositories and CRM services onto app.state from env settings.

    Tests pass doubles for the client, the client factory and the
    repositories; production uses the SuiteDash client and the SQLAlchemy
    repositories.
    """
    app.state.settings = settings
    app.state.client_factory = client_factory or partial(
        SuiteDashClient.from_integration, settings=settings
    )
    app.state.sync_repository = sync_repository or SyncRepository(session_factory=get_session)
    app.state.order_repository = order_repository or OrderRepository(session_factory=get_session)
    app.state.integration_repository = integration_repository or IntegrationSettingsRepository(
        session_factory=get_session
    )
    app.state.sync_engine = None
    app.state.sync_sweep = None

    suitedash = SuiteDashSettings.from_env(settings)
    install_crm(app, suitedash, client or app.state.client_factory(suitedash))


async def load_stored_settings(app: FastAPI) -> None:
    """Replace the env-derived CRM services if an admin saved settings before."""
    stored = await app.state.integration_repository.get_suitedash()
    if stored is not None:
        install_crm(app, stored, app.state.client_factory(stored))


def install_crm(app: FastAPI, suitedash: SuiteDashSettings, client: CRMClient) -> None:
    """Build the engine, orchestrator and order service around client."""
    settings: Settings = app.state.settings
    previous: SyncEngine | None = app.state.sync_engine

    engine = SyncEngine(
        client,
        app.state.sync_repository,
        call_timeout=settings.CRM_CALL_BUDGET_SECONDS,
        max_concurrency=settings.SYNC_MAX_CONCURRENCY,
        locks=previous.locks if previous is not None else None,
    )
    orchestrator = FulfillmentOrchestrator(
        engine, client, sandbox_prefixes=settings.get_sandbox_prefixes()
    )

    app.state.suitedash_settings = suitedash
    app.state.crm_client = client
    app.state.sync_engine = engine
    app.state.order_service = OrderService(app.state.order_repository, orchestrator)

    sweep = app.state.sync_sweep
    if sweep is not None:
        sweep.engine = engine
        if not client.is_configured():
            sweep.stop()
        elif not sweep.running:
            sweep.start()

    logger.info(
        "crm.installed",
        configured=client.is_configured(),
        invoicing=client.supports_invoicing(),
        production=client.is_production(),
        auto_sync=suitedash.auto_sync,
    )
