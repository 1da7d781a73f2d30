"""Public intake endpoints: website contact form and user registration handoff.

Both store the row first and answer 201 immediately; the CRM sync runs as a
FastAPI background task through the shared SyncEngine. With auto_sync off
the row stays unsynced until an admin resync or the sweep picks it up.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status
from pydantic import BaseModel

from src.consultancy.api.deps import (
    get_suitedash_settings,
    get_sync_engine,
    get_sync_repository,
)
from src.consultancy.sync.engine import SyncEngine
from src.consultancy.sync.repository import DuplicateEmail
from src.consultancy.sync.schemas import (
    ContactSubmissionCreate,
    EntityType,
    SiteUserCreate,
    SiteUserRead,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["public"])


class ContactReceived(BaseModel):
    id: str
    message: str = "Thank you for your message. We will be in touch shortly."


async def sync_in_background(engine: SyncEngine, entity_type: EntityType, entity_id: str) -> None:
    """Background wrapper: the row is already saved, so a sync error is only logged."""
    try:
        await engine.sync_one(entity_type, entity_id)
    except Exception:
        logger.exception(
            "sync.background_failed",
            entity_type=entity_type.value,
            entity_id=entity_id,
        )


def queue_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    engine: SyncEngine,
    entity_type: EntityType,
    entity_id: str,
) -> bool:
    """Schedule the CRM sync unless auto_sync is switched off."""
    if not get_suitedash_settings(request).auto_sync:
        logger.info(
            "sync.auto_sync_disabled",
            entity_type=entity_type.value,
            entity_id=entity_id,
        )
        return False
    background_tasks.add_task(sync_in_background, engine, entity_type, entity_id)
    return True


@router.post("/contact", response_model=ContactReceived, status_code=201)
async def submit_contact(
    body: ContactSubmissionCreate,
    request: Request,
    background_tasks: BackgroundTasks,
) -> ContactReceived:
    """Store a contact form submission and queue its CRM sync."""
    repo = get_sync_repository(request)
    engine = get_sync_engine(request)

    data = body.model_copy(
        update={
            "ip_address": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
    )
    submission = await repo.create_contact_submission(data)
    logger.info("contact.received", submission_id=submission.id, pillar=submission.pillar_name)

    queue_sync(request, background_tasks, engine, EntityType.CONTACT_SUBMISSION, submission.id)
    return ContactReceived(id=submission.id)


@router.post("/users", response_model=SiteUserRead, status_code=201)
async def register_user(
    body: SiteUserCreate,
    request: Request,
    background_tasks: BackgroundTasks,
) -> SiteUserRead:
    """Record a newly registered site customer and queue its CRM sync."""
    repo = get_sync_repository(request)
    engine = get_sync_engine(request)

    try:
        user = await repo.create_user(body)
    except DuplicateEmail as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    queue_sync(request, background_tasks, engine, EntityType.USER, user.id)
    return user
