"""CRM sync repository -- async persistence for syncable rows and the audit log.

SyncRepository follows the session_factory callable pattern: every method
opens its own short transaction, so each sync state transition is committed
on its own.

Covers:
- Contact submissions and site users: create / get / list / workflow updates
- Generic per-entity-type access for the engine and the admin surface:
  get_entity, save_sync_record, save_lead_id, list_ids, delete_many, stats
- Audit log: record_audit, list_audit
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterable

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.consultancy.orders.models import OrderModel
from src.consultancy.orders.repository import model_to_order
from src.consultancy.sync.models import (
    ContactSubmissionModel,
    SiteUserModel,
    SyncAuditModel,
)
from src.consultancy.sync.profiles import order_entity, submission_entity, user_entity
from src.consultancy.sync.schemas import (
    AuditAction,
    AuditStatus,
    ContactSubmissionCreate,
    ContactSubmissionRead,
    EntityType,
    SiteUserCreate,
    SiteUserRead,
    SyncableEntity,
    SyncAuditEntry,
    SyncRecord,
    SyncStats,
    SyncStatus,
    WorkflowStatus,
)

logger = structlog.get_logger(__name__)

_MODELS = {
    EntityType.CONTACT_SUBMISSION: ContactSubmissionModel,
    EntityType.USER: SiteUserModel,
    EntityType.ORDER: OrderModel,
}


class DuplicateEmail(Exception):
    """A site user with this email already exists."""

    def __init__(self, email: str) -> None:
        super().__init__(f"A user with email {email} already exists")
        self.email = email


# ── Serialization Helpers ───────────────────────────────────────────────────


def _parse_id(entity_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(entity_id))
    except ValueError:
        return None


def _model_to_submission(model: ContactSubmissionModel) -> ContactSubmissionRead:
    return ContactSubmissionRead(
        id=str(model.id),
        name=model.name,
        email=model.email,
        phone=model.phone,
        company=model.company,
        pillar_name=model.pillar_name,
        message=model.message,
        source=model.source,
        ip_address=model.ip_address,
        user_agent=model.user_agent,
        workflow_status=WorkflowStatus(model.workflow_status),
        sync_status=SyncStatus(model.sync_status),
        external_id=model.external_id,
        last_error=model.last_error,
        synced_at=model.synced_at,
        crm_lead_id=model.crm_lead_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_user(model: SiteUserModel) -> SiteUserRead:
    return SiteUserRead(
        id=str(model.id),
        first_name=model.first_name,
        last_name=model.last_name,
        email=model.email,
        phone=model.phone,
        company=model.company,
        is_active=model.is_active,
        sync_status=SyncStatus(model.sync_status),
        external_id=model.external_id,
        last_error=model.last_error,
        synced_at=model.synced_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_audit(model: SyncAuditModel) -> SyncAuditEntry:
    return SyncAuditEntry(
        id=str(model.id),
        entity_type=EntityType(model.entity_type),
        entity_id=model.entity_id,
        action=AuditAction(model.action),
        status=AuditStatus(model.status),
        error_kind=model.error_kind,
        error_message=model.error_message,
        external_id=model.external_id,
        duration_ms=model.duration_ms,
        created_at=model.created_at,
    )


class SyncRepository:
    """Async repository for syncable rows and the sync audit log.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Contact Submissions ─────────────────────────────────────────────────

    async def create_contact_submission(
        self, data: ContactSubmissionCreate
    ) -> ContactSubmissionRead:
        """Store an enquiry with workflow_status=new and sync_status=unsynced."""
        async for session in self._session_factory():
            model = ContactSubmissionModel(
                name=data.name,
                email=data.email.strip().lower(),
                phone=data.phone,
                company=data.company,
                pillar_name=data.pillar_name,
                message=data.message,
                source=data.source,
                ip_address=data.ip_address,
                user_agent=data.user_agent,
                workflow_status=WorkflowStatus.NEW.value,
                sync_status=SyncStatus.UNSYNCED.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_submission(model)

    async def get_contact_submission(self, submission_id: str) -> ContactSubmissionRead | None:
        pk = _parse_id(submission_id)
        if pk is None:
            return None
        async for session in self._session_factory():
            model = await session.get(ContactSubmissionModel, pk)
            return _model_to_submission(model) if model is not None else None

    async def list_contact_submissions(
        self,
        *,
        sync_status: SyncStatus | None = None,
        workflow_status: WorkflowStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ContactSubmissionRead]:
        """Newest first, optionally filtered by status and a name/email/company search."""
        async for session in self._session_factory():
            stmt = select(ContactSubmissionModel)
            if sync_status is not None:
                stmt = stmt.where(ContactSubmissionModel.sync_status == sync_status.value)
            if workflow_status is not None:
                stmt = stmt.where(
                    ContactSubmissionModel.workflow_status == workflow_status.value
                )
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(
                        ContactSubmissionModel.name.ilike(pattern),
                        ContactSubmissionModel.email.ilike(pattern),
                        ContactSubmissionModel.company.ilike(pattern),
                    )
                )
            stmt = (
                stmt.order_by(ContactSubmissionModel.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            return [_model_to_submission(m) for m in result.scalars().all()]

    async def update_workflow_status(
        self, submission_id: str, workflow_status: WorkflowStatus
    ) -> ContactSubmissionRead | None:
        """Change the business status only; sync columns are untouched."""
        pk = _parse_id(submission_id)
        if pk is None:
            return None
        async for session in self._session_factory():
            model = await session.get(ContactSubmissionModel, pk)
            if model is None:
                return None
            model.workflow_status = workflow_status.value
            await session.commit()
            await session.refresh(model)
            return _model_to_submission(model)

    # ── Site Users ──────────────────────────────────────────────────────────

    async def create_user(self, data: SiteUserCreate) -> SiteUserRead:
        """Insert a user.

        Raises:
            DuplicateEmail: The email is already registered.
        """
        async for session in self._session_factory():
            model = SiteUserModel(
                first_name=data.first_name,
                last_name=data.last_name,
                email=data.email.strip().lower(),
                phone=data.phone,
                company=data.company,
                sync_status=SyncStatus.UNSYNCED.value,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateEmail(model.email) from exc
            await session.refresh(model)
            return _model_to_user(model)

    async def get_user(self, user_id: str) -> SiteUserRead | None:
        pk = _parse_id(user_id)
        if pk is None:
            return None
        async for session in self._session_factory():
            model = await session.get(SiteUserModel, pk)
            return _model_to_user(model) if model is not None else None

    async def list_users(
        self,
        *,
        sync_status: SyncStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SiteUserRead]:
        async for session in self._session_factory():
            stmt = select(SiteUserModel)
            if sync_status is not None:
                stmt = stmt.where(SiteUserModel.sync_status == sync_status.value)
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(
                        SiteUserModel.first_name.ilike(pattern),
                        SiteUserModel.last_name.ilike(pattern),
                        SiteUserModel.email.ilike(pattern),
                    )
                )
            stmt = stmt.order_by(SiteUserModel.created_at.desc()).limit(limit).offset(offset)
            result = await session.execute(stmt)
            return [_model_to_user(m) for m in result.scalars().all()]

    # ── Generic Sync Access ─────────────────────────────────────────────────

    async def get_entity(
        self, entity_type: EntityType, entity_id: str
    ) -> SyncableEntity | None:
        """Load a row of any syncable type as the engine sees it."""
        pk = _parse_id(entity_id)
        if pk is None:
            return None
        async for session in self._session_factory():
            model = await session.get(_MODELS[entity_type], pk)
            if model is None:
                return None
            if entity_type == EntityType.CONTACT_SUBMISSION:
                return submission_entity(_model_to_submission(model))
            if entity_type == EntityType.USER:
                return user_entity(_model_to_user(model))
            return order_entity(model_to_order(model))

    async def save_sync_record(
        self, entity_type: EntityType, entity_id: str, record: SyncRecord
    ) -> bool:
        """Write the four sync columns. Returns False if the row is gone."""
        pk = _parse_id(entity_id)
        if pk is None:
            return False
        model_cls = _MODELS[entity_type]
        async for session in self._session_factory():
            stmt = (
                update(model_cls)
                .where(model_cls.id == pk)
                .values(
                    sync_status=record.sync_status.value,
                    external_id=record.external_id,
                    last_error=record.last_error,
                    synced_at=record.synced_at,
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0
        return False

    async def save_lead_id(
        self, entity_type: EntityType, entity_id: str, lead_id: str
    ) -> bool:
        """Remember the CRM lead created for a contact submission."""
        pk = _parse_id(entity_id)
        if pk is None or entity_type != EntityType.CONTACT_SUBMISSION:
            return False
        async for session in self._session_factory():
            result = await session.execute(
                update(ContactSubmissionModel)
                .where(ContactSubmissionModel.id == pk)
                .values(crm_lead_id=lead_id)
            )
            await session.commit()
            return result.rowcount > 0
        return False

    async def list_ids(
        self,
        entity_type: EntityType,
        statuses: Iterable[SyncStatus] | None = None,
    ) -> list[str]:
        """Ids of a type, oldest first, optionally restricted to sync statuses."""
        model_cls = _MODELS[entity_type]
        async for session in self._session_factory():
            stmt = select(model_cls.id).order_by(model_cls.created_at)
            if statuses is not None:
                stmt = stmt.where(model_cls.sync_status.in_([s.value for s in statuses]))
            result = await session.execute(stmt)
            return [str(pk) for pk in result.scalars().all()]
        return []

    async def delete_many(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        """Delete local rows only; the CRM twin is left alone."""
        pks = [pk for pk in (_parse_id(i) for i in entity_ids) if pk is not None]
        if not pks:
            return 0
        model_cls = _MODELS[entity_type]
        async for session in self._session_factory():
            result = await session.execute(delete(model_cls).where(model_cls.id.in_(pks)))
            await session.commit()
            logger.info(
                "sync.rows_deleted",
                entity_type=entity_type.value,
                requested=len(pks),
                deleted=result.rowcount,
            )
            return result.rowcount
        return 0

    async def stats(self, entity_type: EntityType) -> SyncStats:
        model_cls = _MODELS[entity_type]
        async for session in self._session_factory():
            stmt = select(model_cls.sync_status, func.count()).group_by(model_cls.sync_status)
            result = await session.execute(stmt)
            counts = {status: count for status, count in result.all()}
            return SyncStats(
                total=sum(counts.values()),
                unsynced=counts.get(SyncStatus.UNSYNCED.value, 0),
                pending=counts.get(SyncStatus.PENDING.value, 0),
                synced=counts.get(SyncStatus.SYNCED.value, 0),
                failed=counts.get(SyncStatus.FAILED.value, 0),
            )
        return SyncStats()

    # ── Audit Log ───────────────────────────────────────────────────────────

    async def record_audit(self, entry: SyncAuditEntry) -> None:
        async for session in self._session_factory():
            session.add(
                SyncAuditModel(
                    entity_type=entry.entity_type.value,
                    entity_id=entry.entity_id,
                    action=entry.action.value,
                    status=entry.status.value,
                    error_kind=entry.error_kind,
                    error_message=entry.error_message,
                    external_id=entry.external_id,
                    duration_ms=entry.duration_ms,
                )
            )
            await session.commit()

    async def list_audit(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[SyncAuditEntry]:
        """Most recent entries first."""
        async for session in self._session_factory():
            stmt = select(SyncAuditModel)
            if entity_type is not None:
                stmt = stmt.where(SyncAuditModel.entity_type == entity_type.value)
            if entity_id is not None:
                stmt = stmt.where(SyncAuditModel.entity_id == entity_id)
            stmt = stmt.order_by(SyncAuditModel.created_at.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_audit(m) for m in result.scalars().all()]
        return []
