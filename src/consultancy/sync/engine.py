"""Sync engine -- one-shot and bulk propagation of local rows to the CRM.

SyncEngine is the only writer of SyncRecord columns. Every attempt follows
the same sequence under a per-entity lock:

1. Load the row (EntityNotFound for unknown ids).
2. Client not configured: mark failed with zero CRM calls.
3. Persist pending, then upsert the contact within the call budget.
4. Persist synced (new external_id) or failed (external_id kept).
5. Attach the lead if the row has one and none was created yet.

CRM errors never escape sync_one; they become a failed record. Only input
errors (EntityNotFound) and persistence errors propagate. An attempt that is
cancelled or cannot persist its outcome after step 3 is rewritten as failed
before the error propagates, and sync_pending selects pending rows too, so a
row is never left pending for good. sync_many isolates every entity so one
failure never aborts a batch.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Iterable
from typing import Any, TypeVar

import structlog

from src.consultancy.core.locks import KeyedLock
from src.consultancy.core.monitoring import sync_outcomes_total
from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.errors import (
    CapabilityUnavailable,
    CrmError,
    NetworkFailure,
    NotConfigured,
)
from src.consultancy.crm.schemas import LeadCreate
from src.consultancy.sync.schemas import (
    AuditAction,
    AuditStatus,
    BatchSyncResult,
    EntityType,
    SyncableEntity,
    SyncAuditEntry,
    SyncOutcome,
    SyncRecord,
    SyncStatus,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Pending is included so rows stranded by an interrupted attempt are retried;
# the entity lock serializes a retry with an attempt still in flight.
RETRYABLE_STATUSES = (SyncStatus.UNSYNCED, SyncStatus.PENDING, SyncStatus.FAILED)


class EntityNotFound(LookupError):
    """sync_one was asked for a row that does not exist."""

    def __init__(self, entity_type: EntityType, entity_id: str) -> None:
        super().__init__(f"{entity_type.value} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


async def bounded_call(awaitable: Awaitable[T], timeout: float) -> T:
    """Await a CRM call; exceeding timeout is reported as NetworkFailure."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise NetworkFailure(f"CRM call timed out after {timeout:g}s") from exc


def elapsed_ms(start: float) -> int:
    """Milliseconds since a time.perf_counter() reading."""
    return int((time.perf_counter() - start) * 1000)


class SyncEngine:
    """Propagates contact submissions, users and order customers to the CRM.

    Args:
        client: CRM client adapter.
        repository: SyncRepository (or any object with the same methods).
        call_timeout: Budget in seconds for one adapter call, retries included.
        max_concurrency: Upper bound on in-flight entities in sync_many.
        locks: Per-entity lock registry; pass the previous engine's when
            replacing an engine so in-flight attempts stay serialized.
    """

    def __init__(
        self,
        client: CRMClient,
        repository: Any,
        *,
        call_timeout: float = 45.0,
        max_concurrency: int = 5,
        locks: KeyedLock | None = None,
    ) -> None:
        self._client = client
        self._repository = repository
        self._call_timeout = call_timeout
        self._max_concurrency = max(1, max_concurrency)
        self._locks = locks if locks is not None else KeyedLock()

    @property
    def client(self) -> CRMClient:
        return self._client

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    @property
    def call_timeout(self) -> float:
        return self._call_timeout

    # ── Single Entity ───────────────────────────────────────────────────────

    async def sync_one(self, entity_type: EntityType, entity_id: str) -> SyncOutcome:
        """Sync one row; concurrent calls for the same row run one after another.

        Raises:
            EntityNotFound: No row of entity_type has entity_id.
        """
        async with self._locks.acquire((entity_type, str(entity_id))):
            return await self._sync_locked(entity_type, str(entity_id))

    async def _sync_locked(self, entity_type: EntityType, entity_id: str) -> SyncOutcome:
        entity = await self._repository.get_entity(entity_type, entity_id)
        if entity is None:
            raise EntityNotFound(entity_type, entity_id)

        log = logger.bind(entity_type=entity_type.value, entity_id=entity_id)

        if not self._client.is_configured():
            error = NotConfigured()
            record = entity.record.mark_failed(error.message)
            await self._persist(entity, record)
            await self.audit(
                entity_type, entity_id, AuditAction.UPSERT_CONTACT, AuditStatus.SKIPPED,
                error=error,
            )
            log.info("sync.skipped_not_configured", status=record.sync_status.value)
            return SyncOutcome(
                entity_type=entity_type,
                entity_id=entity_id,
                record=record,
                error_kind=error.kind,
            )

        await self._persist(entity, entity.record.mark_pending())
        try:
            record, error_kind = await self._upsert(entity, log)
            await self._persist(entity, record)
        except BaseException as exc:
            await self._abandon(entity, exc)
            raise

        lead_created = False
        if (
            record.sync_status == SyncStatus.SYNCED
            and entity.lead is not None
            and entity.lead_id is None
        ):
            lead_id = await self._create_lead(entity, entity.lead, record.external_id or "")
            if lead_id is not None:
                await self._repository.save_lead_id(entity_type, entity_id, lead_id)
                lead_created = True

        return SyncOutcome(
            entity_type=entity_type,
            entity_id=entity_id,
            record=record,
            error_kind=error_kind,
            lead_created=lead_created,
        )

    async def _upsert(
        self, entity: SyncableEntity, log: Any
    ) -> tuple[SyncRecord, str | None]:
        """Upsert the contact; returns the record to persist and the error kind."""
        entity_type, entity_id = entity.entity_type, entity.entity_id
        start = time.perf_counter()
        try:
            contact = await bounded_call(
                self._client.upsert_contact(entity.profile), self._call_timeout
            )
        except CrmError as exc:
            await self.audit(
                entity_type, entity_id, AuditAction.UPSERT_CONTACT, AuditStatus.FAILED,
                error=exc, duration_ms=elapsed_ms(start),
            )
            log.warning(
                "sync.entity_failed",
                status=SyncStatus.FAILED.value,
                error_kind=exc.kind,
                error=exc.message,
            )
            return entity.record.mark_failed(exc.message), exc.kind
        except Exception as exc:
            message = f"Unexpected CRM error: {exc}"
            await self.audit(
                entity_type, entity_id, AuditAction.UPSERT_CONTACT, AuditStatus.FAILED,
                error_kind="unexpected", error_message=message, duration_ms=elapsed_ms(start),
            )
            log.exception("sync.unexpected_error", status=SyncStatus.FAILED.value)
            return entity.record.mark_failed(message), "unexpected"

        await self.audit(
            entity_type, entity_id, AuditAction.UPSERT_CONTACT, AuditStatus.SUCCESS,
            external_id=contact.id, duration_ms=elapsed_ms(start),
        )
        log.info(
            "sync.entity_synced",
            status=SyncStatus.SYNCED.value,
            external_id=contact.id,
            created=contact.created,
        )
        return entity.record.mark_synced(contact.id), None

    async def _abandon(self, entity: SyncableEntity, exc: BaseException) -> None:
        """Replace the pending marker of an attempt that did not finish."""
        reason = "cancelled" if isinstance(exc, asyncio.CancelledError) else type(exc).__name__
        record = entity.record.mark_failed(f"Sync interrupted ({reason})")
        log = logger.bind(entity_type=entity.entity_type.value, entity_id=entity.entity_id)
        try:
            await self._persist(entity, record)
        except Exception:
            # Row stays pending; sync_pending picks it up on the next sweep.
            log.exception("sync.interrupted_not_recorded", reason=reason)
            return
        log.warning("sync.interrupted", reason=reason)

    async def _create_lead(
        self, entity: SyncableEntity, lead: LeadCreate, contact_ref: str
    ) -> str | None:
        """Best effort: a failed lead never fails the contact sync.

        Returns the CRM lead id, or None when no lead was created.
        """
        log = logger.bind(entity_type=entity.entity_type.value, entity_id=entity.entity_id)
        start = time.perf_counter()
        try:
            lead_id = await bounded_call(
                self._client.create_lead(contact_ref, lead), self._call_timeout
            )
        except CapabilityUnavailable as exc:
            await self.audit(
                entity.entity_type, entity.entity_id, AuditAction.CREATE_LEAD,
                AuditStatus.SKIPPED, error=exc,
            )
            log.info("sync.lead_skipped", error_kind=exc.kind)
            return None
        except CrmError as exc:
            await self.audit(
                entity.entity_type, entity.entity_id, AuditAction.CREATE_LEAD,
                AuditStatus.FAILED, error=exc, duration_ms=elapsed_ms(start),
            )
            log.warning("sync.lead_failed", error_kind=exc.kind, error=exc.message)
            return None
        except Exception as exc:
            await self.audit(
                entity.entity_type, entity.entity_id, AuditAction.CREATE_LEAD,
                AuditStatus.FAILED, error_kind="unexpected",
                error_message=f"Unexpected CRM error: {exc}", duration_ms=elapsed_ms(start),
            )
            log.exception("sync.lead_unexpected_error")
            return None

        await self.audit(
            entity.entity_type, entity.entity_id, AuditAction.CREATE_LEAD,
            AuditStatus.SUCCESS, external_id=lead_id, duration_ms=elapsed_ms(start),
        )
        log.info("sync.lead_created", lead_id=lead_id)
        return lead_id

    async def _persist(self, entity: SyncableEntity, record: SyncRecord) -> None:
        saved = await self._repository.save_sync_record(
            entity.entity_type, entity.entity_id, record
        )
        if not saved:
            logger.warning(
                "sync.row_vanished",
                entity_type=entity.entity_type.value,
                entity_id=entity.entity_id,
                status=record.sync_status.value,
            )
        if record.sync_status in (SyncStatus.SYNCED, SyncStatus.FAILED):
            sync_outcomes_total.labels(
                entity_type=entity.entity_type.value,
                status=record.sync_status.value,
            ).inc()

    # ── Batches ─────────────────────────────────────────────────────────────

    async def sync_many(
        self, entity_type: EntityType, entity_ids: Iterable[str]
    ) -> BatchSyncResult:
        """Sync a batch with bounded fan-out; every id counts as synced or failed."""
        unique_ids = list(dict.fromkeys(str(i) for i in entity_ids))
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(entity_id: str) -> bool:
            async with semaphore:
                try:
                    outcome = await self.sync_one(entity_type, entity_id)
                except EntityNotFound:
                    logger.warning(
                        "sync.batch_entity_missing",
                        entity_type=entity_type.value,
                        entity_id=entity_id,
                    )
                    return False
                except Exception:
                    logger.exception(
                        "sync.batch_entity_error",
                        entity_type=entity_type.value,
                        entity_id=entity_id,
                    )
                    return False
                return outcome.ok

        results = await asyncio.gather(*(_run(i) for i in unique_ids))

        failed_ids = [i for i, ok in zip(unique_ids, results) if not ok]
        batch = BatchSyncResult(
            synced=len(unique_ids) - len(failed_ids),
            failed=len(failed_ids),
            total=len(unique_ids),
            failed_ids=failed_ids,
        )
        logger.info(
            "sync.batch_complete",
            entity_type=entity_type.value,
            synced=batch.synced,
            failed=batch.failed,
            total=batch.total,
        )
        return batch

    async def sync_all(self, entity_type: EntityType) -> BatchSyncResult:
        """Resync every row of a type."""
        ids = await self._repository.list_ids(entity_type)
        return await self.sync_many(entity_type, ids)

    async def sync_pending(self, entity_type: EntityType) -> BatchSyncResult:
        """Retry rows that are unsynced, failed, or left pending by an interrupted attempt."""
        ids = await self._repository.list_ids(entity_type, statuses=RETRYABLE_STATUSES)
        return await self.sync_many(entity_type, ids)

    # ── Audit ───────────────────────────────────────────────────────────────

    async def audit(
        self,
        entity_type: EntityType,
        entity_id: str,
        action: AuditAction,
        status: AuditStatus,
        *,
        error: CrmError | None = None,
        error_kind: str | None = None,
        error_message: str | None = None,
        external_id: str | None = None,
        duration_ms: int | None = None,
    ) -> None:
        """Append one attempt to the audit log. A failed write is logged, not raised."""
        entry = SyncAuditEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            status=status,
            error_kind=error.kind if error is not None else error_kind,
            error_message=error.message if error is not None else error_message,
            external_id=external_id,
            duration_ms=duration_ms,
        )
        try:
            await self._repository.record_audit(entry)
        except Exception:
            logger.exception(
                "sync.audit_write_failed",
                entity_type=entity_type.value,
                entity_id=entity_id,
                action=action.value,
            )
