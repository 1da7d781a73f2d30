"""FastAPI dependencies: admin authentication and app.state service lookup.

Services are built once in the lifespan and stored on app.state; handlers
fetch them through the getters below, which answer 503 when a service was
not initialized.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.consultancy.core.security import ADMIN_ROLE, verify_token


async def get_current_admin(request: Request) -> dict:
    """Validate the bearer JWT and require the admin role.

    Returns the decoded token payload.

    Raises:
        HTTPException(401): No token, or an invalid/expired one.
        HTTPException(403): Valid token without the admin role.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return payload


# ── Service Lookup ───────────────────────────────────────────────────────────


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_sync_engine(request: Request) -> Any:
    """SyncEngine from app.state, 503 if not available."""
    return _from_state(request, "sync_engine", "Sync engine")


def get_sync_repository(request: Request) -> Any:
    return _from_state(request, "sync_repository", "Sync repository")


def get_order_repository(request: Request) -> Any:
    return _from_state(request, "order_repository", "Order repository")


def get_order_service(request: Request) -> Any:
    return _from_state(request, "order_service", "Order service")


def get_crm_client(request: Request) -> Any:
    return _from_state(request, "crm_client", "CRM client")


def get_integration_repository(request: Request) -> Any:
    return _from_state(request, "integration_repository", "Integration settings repository")


def get_suitedash_settings(request: Request) -> Any:
    """Effective SuiteDash settings the current client was built from."""
    return _from_state(request, "suitedash_settings", "SuiteDash settings")


def get_client_factory(request: Request) -> Any:
    return _from_state(request, "client_factory", "CRM client factory")
