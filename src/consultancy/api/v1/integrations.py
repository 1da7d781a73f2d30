"""Admin view of the SuiteDash integration: settings, updates and a connection test.

Saved settings are stored in integration_settings and take effect at once:
the CRM client and every service holding it are rebuilt on app.state.
Credentials are only ever returned masked.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from src.consultancy.api.deps import (
    get_client_factory,
    get_crm_client,
    get_current_admin,
    get_integration_repository,
    get_suitedash_settings,
)
from src.consultancy.config import get_settings
from src.consultancy.crm.schemas import ConnectionCheck
from src.consultancy.integrations.schemas import SuiteDashSettingsUpdate, mask_secret
from src.consultancy.services import install_crm

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin/integrations", tags=["admin-integrations"])


class SuiteDashStatus(BaseModel):
    enabled: bool
    configured: bool
    invoicing_enabled: bool
    production: bool | None = None
    auto_sync: bool
    api_url: str
    public_id: str
    secret_key: str
    sandbox_prefixes: list[str]
    sweep_enabled: bool
    sweep_interval_minutes: int
    last_tested_at: datetime | None = None
    last_test_success: bool | None = None
    last_test_message: str | None = None


def _status(request: Request) -> SuiteDashStatus:
    client = get_crm_client(request)
    current = get_suitedash_settings(request)
    settings = get_settings()
    return SuiteDashStatus(
        enabled=current.enabled,
        configured=client.is_configured(),
        invoicing_enabled=client.supports_invoicing(),
        production=client.is_production(),
        auto_sync=current.auto_sync,
        api_url=current.api_url,
        public_id=mask_secret(current.public_id),
        secret_key=mask_secret(current.secret_key),
        sandbox_prefixes=list(settings.get_sandbox_prefixes()),
        sweep_enabled=settings.SYNC_SWEEP_ENABLED,
        sweep_interval_minutes=settings.SYNC_SWEEP_INTERVAL_MINUTES,
        last_tested_at=current.last_tested_at,
        last_test_success=current.last_test_success,
        last_test_message=current.last_test_message,
    )


@router.get("/suitedash", response_model=SuiteDashStatus)
async def suitedash_status(
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> SuiteDashStatus:
    """Current SuiteDash settings with credentials masked."""
    return _status(request)


@router.put("/suitedash/settings", response_model=SuiteDashStatus)
async def update_suitedash_settings(
    body: SuiteDashSettingsUpdate,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> SuiteDashStatus:
    """Save SuiteDash settings and rebuild the CRM client with them.

    Omitted fields keep their value; blank or masked credentials keep the
    stored ones. Rows that failed while the CRM was unconfigured can be
    resynced as soon as this returns.
    """
    repo = get_integration_repository(request)
    current = get_suitedash_settings(request)

    saved = await repo.save_suitedash(current.apply(body))
    client = get_client_factory(request)(saved)
    install_crm(request.app, saved, client)

    logger.info(
        "integrations.suitedash_updated",
        admin=admin.get("sub"),
        enabled=saved.enabled,
        configured=client.is_configured(),
        auto_sync=saved.auto_sync,
    )
    return _status(request)


@router.post("/suitedash/test", response_model=ConnectionCheck)
async def suitedash_test(
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> ConnectionCheck:
    """Probe the SuiteDash API with the current credentials and store the result."""
    client = get_crm_client(request)
    repo = get_integration_repository(request)
    current = get_suitedash_settings(request)

    check = await client.test_connection()
    request.app.state.suitedash_settings = await repo.save_suitedash(
        current.with_test_result(check.success, check.message, datetime.now(timezone.utc))
    )
    return check
