"""Admin sync surface -- resync, bulk operations and inspection of CRM links.

Generic routes work for every syncable type, addressed by its URL segment
(contact-submissions, users, orders):

    POST /api/v1/admin/{entity}/{entity_id}/resync
    POST /api/v1/admin/{entity}/resync-all
    POST /api/v1/admin/{entity}/bulk-delete
    GET  /api/v1/admin/{entity}/stats

Per-type list and detail routes expose last_error verbatim. Operators can
change a submission's workflow_status, never its sync_status. Every route
requires an admin bearer token.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from src.consultancy.api.deps import (
    get_current_admin,
    get_order_repository,
    get_sync_engine,
    get_sync_repository,
)
from src.consultancy.orders.schemas import OrderRead
from src.consultancy.sync.engine import EntityNotFound
from src.consultancy.sync.schemas import (
    BatchSyncResult,
    BulkDeleteRequest,
    BulkDeleteResult,
    ContactSubmissionRead,
    EntityType,
    SiteUserRead,
    SyncAuditEntry,
    SyncStats,
    SyncStatus,
    WorkflowStatus,
    WorkflowStatusUpdate,
)

router = APIRouter(prefix="/api/v1/admin", tags=["admin-sync"])


class AdminEntity(str, Enum):
    """URL segment of each syncable type."""

    CONTACT_SUBMISSIONS = "contact-submissions"
    USERS = "users"
    ORDERS = "orders"

    @property
    def entity_type(self) -> EntityType:
        return _SEGMENT_TYPES[self]


_SEGMENT_TYPES = {
    AdminEntity.CONTACT_SUBMISSIONS: EntityType.CONTACT_SUBMISSION,
    AdminEntity.USERS: EntityType.USER,
    AdminEntity.ORDERS: EntityType.ORDER,
}


class SyncRecordResponse(BaseModel):
    """SyncRecord of one row after a resync."""

    entity_type: EntityType
    entity_id: str
    sync_status: SyncStatus
    external_id: str | None = None
    last_error: str | None = None
    synced_at: datetime | None = None
    error_kind: str | None = None


def _not_found(label: str, entity_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{label} not found: {entity_id}",
    )


# ── Generic Sync Operations ──────────────────────────────────────────────────
# Registered before the per-type detail routes so /{entity}/stats is not
# captured as a detail lookup.


@router.post("/{entity}/resync-all", response_model=BatchSyncResult)
async def resync_all(
    entity: AdminEntity,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> BatchSyncResult:
    """Resync every row of a type; one failing row never aborts the batch."""
    engine = get_sync_engine(request)
    return await engine.sync_all(entity.entity_type)


@router.post("/{entity}/bulk-delete", response_model=BulkDeleteResult)
async def bulk_delete(
    entity: AdminEntity,
    body: BulkDeleteRequest,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> BulkDeleteResult:
    """Delete local rows. Their CRM contacts are left untouched."""
    repo = get_sync_repository(request)
    deleted = await repo.delete_many(entity.entity_type, body.ids)
    return BulkDeleteResult(deleted=deleted)


@router.get("/{entity}/stats", response_model=SyncStats)
async def sync_stats(
    entity: AdminEntity,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> SyncStats:
    repo = get_sync_repository(request)
    return await repo.stats(entity.entity_type)


@router.post("/{entity}/{entity_id}/resync", response_model=SyncRecordResponse)
async def resync_one(
    entity: AdminEntity,
    entity_id: str,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> SyncRecordResponse:
    """Resync one row now. Waits if a sync of the same row is in flight."""
    engine = get_sync_engine(request)
    try:
        outcome = await engine.sync_one(entity.entity_type, entity_id)
    except EntityNotFound as exc:
        raise _not_found(entity.entity_type.value, entity_id) from exc
    return SyncRecordResponse(
        entity_type=outcome.entity_type,
        entity_id=outcome.entity_id,
        sync_status=outcome.record.sync_status,
        external_id=outcome.record.external_id,
        last_error=outcome.record.last_error,
        synced_at=outcome.record.synced_at,
        error_kind=outcome.error_kind,
    )


# ── Audit Log ────────────────────────────────────────────────────────────────


@router.get("/sync-log", response_model=list[SyncAuditEntry])
async def sync_log(
    request: Request,
    entity_type: EntityType | None = Query(default=None, description="Filter by entity type"),
    entity_id: str | None = Query(default=None, description="Filter by entity id"),
    limit: int = Query(default=100, ge=1, le=500),
    admin: dict = Depends(get_current_admin),
) -> list[SyncAuditEntry]:
    """Most recent CRM attempts, newest first."""
    repo = get_sync_repository(request)
    return await repo.list_audit(entity_type=entity_type, entity_id=entity_id, limit=limit)


# ── Contact Submissions ──────────────────────────────────────────────────────


@router.get("/contact-submissions", response_model=list[ContactSubmissionRead])
async def list_contact_submissions(
    request: Request,
    sync_status: SyncStatus | None = Query(default=None),
    workflow_status: WorkflowStatus | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: dict = Depends(get_current_admin),
) -> list[ContactSubmissionRead]:
    repo = get_sync_repository(request)
    return await repo.list_contact_submissions(
        sync_status=sync_status,
        workflow_status=workflow_status,
        search=search,
        limit=limit,
        offset=offset,
    )


@router.get("/contact-submissions/{submission_id}", response_model=ContactSubmissionRead)
async def get_contact_submission(
    submission_id: str,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> ContactSubmissionRead:
    repo = get_sync_repository(request)
    submission = await repo.get_contact_submission(submission_id)
    if submission is None:
        raise _not_found("Contact submission", submission_id)
    return submission


@router.patch(
    "/contact-submissions/{submission_id}/workflow-status",
    response_model=ContactSubmissionRead,
)
async def update_workflow_status(
    submission_id: str,
    body: WorkflowStatusUpdate,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> ContactSubmissionRead:
    """Move a submission through new / in_progress / closed."""
    repo = get_sync_repository(request)
    submission = await repo.update_workflow_status(submission_id, body.workflow_status)
    if submission is None:
        raise _not_found("Contact submission", submission_id)
    return submission


# ── Users ────────────────────────────────────────────────────────────────────


@router.get("/users", response_model=list[SiteUserRead])
async def list_users(
    request: Request,
    sync_status: SyncStatus | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: dict = Depends(get_current_admin),
) -> list[SiteUserRead]:
    repo = get_sync_repository(request)
    return await repo.list_users(
        sync_status=sync_status, search=search, limit=limit, offset=offset
    )


@router.get("/users/{user_id}", response_model=SiteUserRead)
async def get_user(
    user_id: str,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> SiteUserRead:
    repo = get_sync_repository(request)
    user = await repo.get_user(user_id)
    if user is None:
        raise _not_found("User", user_id)
    return user


# ── Orders ───────────────────────────────────────────────────────────────────


@router.get("/orders", response_model=list[OrderRead])
async def list_orders(
    request: Request,
    sync_status: SyncStatus | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: dict = Depends(get_current_admin),
) -> list[OrderRead]:
    repo = get_order_repository(request)
    return await repo.list_orders(
        sync_status=sync_status, search=search, limit=limit, offset=offset
    )


@router.get("/orders/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: str,
    request: Request,
    admin: dict = Depends(get_current_admin),
) -> OrderRead:
    repo = get_order_repository(request)
    order = await repo.get_order(order_id)
    if order is None:
        raise _not_found("Order", order_id)
    return order
