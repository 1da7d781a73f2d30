"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.consultancy.api.v1 import admin_sync, contact, health, integrations, orders

router = APIRouter()

router.include_router(health.router)
router.include_router(contact.router)
router.include_router(orders.router)
router.include_router(integrations.router)
router.include_router(admin_sync.router)
