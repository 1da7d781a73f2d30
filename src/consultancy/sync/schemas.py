"""Pydantic schemas for CRM synchronization -- status lifecycle, entities, audit.

Defines:
- Enums: EntityType, SyncStatus, WorkflowStatus, AuditAction, AuditStatus
- SyncRecord: the four CRM-link fields carried by every syncable row
- SyncableEntity: what the engine loads (profile + record + optional lead)
- Engine results: SyncOutcome, BatchSyncResult
- SyncAuditEntry: one row of the integration log
- Contact submissions and site users: Create/Read payloads, SyncStats
- Admin payloads: WorkflowStatusUpdate, BulkDeleteRequest/Result
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from src.consultancy.crm.schemas import ContactProfile, LeadCreate


# ── Enums ───────────────────────────────────────────────────────────────────


class EntityType(str, Enum):
    """Kinds of rows mirrored into the CRM as contacts."""

    CONTACT_SUBMISSION = "contact_submission"
    USER = "user"
    ORDER = "order"


class SyncStatus(str, Enum):
    """Lifecycle of a row's CRM link.

    unsynced -> pending -> synced | failed; synced and failed both go back to
    pending on the next attempt.
    """

    UNSYNCED = "unsynced"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    """Business lifecycle of a contact submission, set by operators."""

    NEW = "new"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class AuditAction(str, Enum):
    UPSERT_CONTACT = "upsert_contact"
    CREATE_INVOICE = "create_invoice"
    CREATE_LEAD = "create_lead"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# ── Sync Record ─────────────────────────────────────────────────────────────


class SyncRecord(BaseModel):
    """CRM link state embedded on a syncable row.

    Transitions return a new record. ``external_id`` is only ever replaced by
    a fresh success; a failure keeps whatever id the row already had.
    """

    sync_status: SyncStatus = SyncStatus.UNSYNCED
    external_id: str | None = None
    last_error: str | None = None
    synced_at: datetime | None = None

    def mark_pending(self) -> SyncRecord:
        return self.model_copy(update={"sync_status": SyncStatus.PENDING})

    def mark_synced(self, external_id: str, at: datetime | None = None) -> SyncRecord:
        return SyncRecord(
            sync_status=SyncStatus.SYNCED,
            external_id=external_id,
            last_error=None,
            synced_at=at or datetime.now(timezone.utc),
        )

    def mark_failed(self, error: str) -> SyncRecord:
        return self.model_copy(
            update={"sync_status": SyncStatus.FAILED, "last_error": error}
        )


class SyncableEntity(BaseModel):
    """A row as the sync engine sees it."""

    entity_type: EntityType
    entity_id: str
    profile: ContactProfile
    record: SyncRecord
    # Lead to attach once the contact is synced (contact submissions only);
    # lead_id is set after it was created and stops further attempts
    lead: LeadCreate | None = None
    lead_id: str | None = None


# ── Engine Results ──────────────────────────────────────────────────────────


class SyncOutcome(BaseModel):
    """Result of one sync_one call: the record as persisted."""

    entity_type: EntityType
    entity_id: str
    record: SyncRecord
    error_kind: str | None = None
    lead_created: bool = False

    @property
    def ok(self) -> bool:
        return self.record.sync_status == SyncStatus.SYNCED


class BatchSyncResult(BaseModel):
    """Aggregate of a sync_many call."""

    synced: int = 0
    failed: int = 0
    total: int = 0
    failed_ids: list[str] = Field(default_factory=list)


# ── Audit Log ───────────────────────────────────────────────────────────────


class SyncAuditEntry(BaseModel):
    """One CRM attempt for one entity."""

    id: str | None = None
    entity_type: EntityType
    entity_id: str
    action: AuditAction
    status: AuditStatus
    error_kind: str | None = None
    error_message: str | None = None
    external_id: str | None = None
    duration_ms: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Contact Submissions ─────────────────────────────────────────────────────


class ContactSubmissionCreate(BaseModel):
    """Inbound website enquiry."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)
    pillar_name: str | None = Field(default=None, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    source: str = "website"
    ip_address: str | None = None
    user_agent: str | None = None


class ContactSubmissionRead(BaseModel):
    id: str
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    pillar_name: str | None = None
    message: str
    source: str = "website"
    ip_address: str | None = None
    user_agent: str | None = None
    workflow_status: WorkflowStatus = WorkflowStatus.NEW
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    external_id: str | None = None
    last_error: str | None = None
    synced_at: datetime | None = None
    crm_lead_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_status(self) -> str:
        """Single badge combining workflow and sync state for list views."""
        if self.workflow_status == WorkflowStatus.CLOSED:
            return WorkflowStatus.CLOSED.value
        if self.sync_status == SyncStatus.FAILED:
            return SyncStatus.FAILED.value
        if (
            self.workflow_status == WorkflowStatus.NEW
            and self.sync_status == SyncStatus.SYNCED
        ):
            return SyncStatus.SYNCED.value
        return self.workflow_status.value


# ── Site Users ──────────────────────────────────────────────────────────────


class SiteUserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)


class SiteUserRead(BaseModel):
    id: str
    first_name: str
    last_name: str = ""
    email: str
    phone: str | None = None
    company: str | None = None
    is_active: bool = True
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    external_id: str | None = None
    last_error: str | None = None
    synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Admin Payloads ──────────────────────────────────────────────────────────


class SyncStats(BaseModel):
    """Row counts per sync status for one entity type."""

    total: int = 0
    unsynced: int = 0
    pending: int = 0
    synced: int = 0
    failed: int = 0


class WorkflowStatusUpdate(BaseModel):
    workflow_status: WorkflowStatus


class BulkDeleteRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1)


class BulkDeleteResult(BaseModel):
    deleted: int
