"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness fails
only on the database; the CRM is reported but never blocks traffic, since
every CRM outage degrades to failed syncs and deferred invoices.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.consultancy.config import get_settings
from src.consultancy.core.database import ping_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: database connectivity plus CRM configuration state.

    Returns 200 if the database answers, 503 otherwise.
    """
    checks: dict = {"database": "ok"}

    try:
        await ping_db()
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    client = getattr(request.app.state, "crm_client", None)
    if client is None:
        checks["crm"] = "uninitialized"
    elif client.is_configured():
        checks["crm"] = "configured"
        checks["crm_invoicing"] = client.supports_invoicing()
    else:
        checks["crm"] = "not_configured"

    healthy = checks["database"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
