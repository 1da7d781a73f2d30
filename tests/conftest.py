"""Shared test doubles and fixtures for the CRM sync service.

Provides:
- FakeCRMClient: in-process CRMClient with find-or-create semantics,
  injectable failures, call recording and in-flight tracking
- InMemorySyncRepository / InMemoryOrderRepository /
  InMemoryIntegrationSettingsRepository: repository doubles with the same
  async methods as the SQLAlchemy repositories
- fake_client_for: client factory double building FakeCRMClient from
  SuiteDash settings
- Fixtures wiring them into a SyncEngine, FulfillmentOrchestrator and
  OrderService; no real database or network anywhere
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

import pytest

from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.errors import CapabilityUnavailable, NotConfigured
from src.consultancy.crm.schemas import (
    ContactProfile,
    CrmContact,
    CrmInvoice,
    LeadCreate,
    LineItem,
)
from src.consultancy.integrations.schemas import SuiteDashSettings
from src.consultancy.orders.fulfillment import FulfillmentOrchestrator
from src.consultancy.orders.repository import DuplicateOrderNumber
from src.consultancy.orders.schemas import (
    OrderCreate,
    OrderFulfillment,
    OrderRead,
)
from src.consultancy.orders.service import OrderService
from src.consultancy.sync.engine import SyncEngine
from src.consultancy.sync.profiles import order_entity, submission_entity, user_entity
from src.consultancy.sync.repository import DuplicateEmail
from src.consultancy.sync.schemas import (
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


# ── Fake CRM Client ──────────────────────────────────────────────────────────


class FakeCRMClient(CRMClient):
    """CRMClient double.

    Contacts are keyed by lower-cased email, so repeated upserts return the
    same id. Errors can be injected globally (upsert_error) or per email
    (fail_emails).
    """

    def __init__(
        self,
        *,
        configured: bool = True,
        invoicing: bool = True,
        production: bool | None = None,
        contact_prefix: str = "ct_",
        invoice_prefix: str = "inv_",
        payment_url: str | None = "https://pay.example.com/checkout",
        delay: float = 0.0,
    ) -> None:
        self.configured = configured
        self.invoicing = invoicing
        self.production = production
        self.contact_prefix = contact_prefix
        self.invoice_prefix = invoice_prefix
        self.payment_url = payment_url
        self.invoice_production: bool | None = None
        self.delay = delay

        self.upsert_error: Exception | None = None
        self.invoice_error: Exception | None = None
        self.lead_error: Exception | None = None
        self.fail_emails: dict[str, Exception] = {}

        self.contacts: dict[str, str] = {}
        self.calls: list[tuple[str, object]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def is_configured(self) -> bool:
        return self.configured

    def supports_invoicing(self) -> bool:
        return self.configured and self.invoicing

    def is_production(self) -> bool | None:
        return self.production

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self) -> None:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    async def upsert_contact(self, profile: ContactProfile) -> CrmContact:
        self.calls.append(("upsert_contact", profile))
        if not self.configured:
            raise NotConfigured()
        await self._enter()
        if profile.email in self.fail_emails:
            raise self.fail_emails[profile.email]
        if self.upsert_error is not None:
            raise self.upsert_error
        existing = self.contacts.get(profile.email)
        if existing is not None:
            return CrmContact(id=existing, email=profile.email, created=False)
        contact_id = f"{self.contact_prefix}{len(self.contacts) + 1}"
        self.contacts[profile.email] = contact_id
        return CrmContact(id=contact_id, email=profile.email, created=True)

    async def create_invoice(
        self,
        contact_ref: str,
        line_items: list[LineItem],
        *,
        reference: str | None = None,
    ) -> CrmInvoice:
        self.calls.append(("create_invoice", (contact_ref, line_items, reference)))
        if not self.configured:
            raise NotConfigured()
        if not self.invoicing:
            raise CapabilityUnavailable("invoicing")
        await self._enter()
        if self.invoice_error is not None:
            raise self.invoice_error
        return CrmInvoice(
            id=f"{self.invoice_prefix}{self.call_count('create_invoice')}",
            payment_url=self.payment_url,
            total=round(sum(i.amount for i in line_items), 2),
            is_production=self.invoice_production,
        )

    async def create_lead(self, contact_ref: str, lead: LeadCreate) -> str:
        self.calls.append(("create_lead", (contact_ref, lead)))
        if self.lead_error is not None:
            raise self.lead_error
        return f"lead_{self.call_count('create_lead')}"


# ── In-Memory Repositories ───────────────────────────────────────────────────


class InMemoryOrderRepository:
    """In-memory OrderRepository for testing without database."""

    def __init__(self) -> None:
        self._orders: dict[str, OrderRead] = {}
        self.taken_numbers: set[str] = set()
        self.save_fulfillment_error: Exception | None = None

    async def create_order(self, order_number: str, data: OrderCreate, total: float) -> OrderRead:
        if order_number in self.taken_numbers or any(
            o.order_number == order_number for o in self._orders.values()
        ):
            raise DuplicateOrderNumber(order_number)
        order_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        order = OrderRead(
            id=order_id,
            order_number=order_number,
            customer_first_name=data.customer.first_name,
            customer_last_name=data.customer.last_name,
            customer_email=data.customer.email.strip().lower(),
            customer_phone=data.customer.phone,
            customer_company=data.customer.company,
            items=data.items,
            notes=data.notes,
            total=total,
            created_at=now,
            updated_at=now,
        )
        self._orders[order_id] = order
        return order

    async def get_order(self, order_id: str) -> OrderRead | None:
        return self._orders.get(order_id)

    async def get_by_number(self, order_number: str) -> OrderRead | None:
        for order in self._orders.values():
            if order.order_number == order_number:
                return order
        return None

    async def list_orders(
        self,
        *,
        sync_status: SyncStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OrderRead]:
        result = list(self._orders.values())
        if sync_status is not None:
            result = [o for o in result if o.sync_status == sync_status]
        if search:
            result = [
                o for o in result
                if search.lower() in f"{o.order_number} {o.customer_email}".lower()
            ]
        return result[offset: offset + limit]

    async def save_fulfillment(self, order_id: str, fulfillment: OrderFulfillment) -> bool:
        if self.save_fulfillment_error is not None:
            raise self.save_fulfillment_error
        order = self._orders.get(order_id)
        if order is None:
            return False
        self._orders[order_id] = order.model_copy(
            update={
                "fulfillment_mode": fulfillment.mode,
                "payment_url": fulfillment.payment_url,
                "crm_contact_id": fulfillment.crm_contact_id,
                "crm_invoice_id": fulfillment.crm_invoice_id,
            }
        )
        return True


class InMemorySyncRepository:
    """In-memory SyncRepository; shares the order store with InMemoryOrderRepository."""

    def __init__(self, order_repo: InMemoryOrderRepository | None = None) -> None:
        self._submissions: dict[str, ContactSubmissionRead] = {}
        self._users: dict[str, SiteUserRead] = {}
        self._order_repo = order_repo or InMemoryOrderRepository()
        self.audit: list[SyncAuditEntry] = []
        self.saved: list[tuple[EntityType, str, SyncRecord]] = []

    def _store(self, entity_type: EntityType) -> dict:
        if entity_type == EntityType.CONTACT_SUBMISSION:
            return self._submissions
        if entity_type == EntityType.USER:
            return self._users
        return self._order_repo._orders

    # ── Contact Submissions ─────────────────────────────────────────────────

    async def create_contact_submission(
        self, data: ContactSubmissionCreate
    ) -> ContactSubmissionRead:
        submission_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        submission = ContactSubmissionRead(
            id=submission_id,
            **data.model_dump(exclude={"email"}),
            email=data.email.strip().lower(),
            created_at=now,
            updated_at=now,
        )
        self._submissions[submission_id] = submission
        return submission

    async def get_contact_submission(self, submission_id: str) -> ContactSubmissionRead | None:
        return self._submissions.get(submission_id)

    async def list_contact_submissions(
        self,
        *,
        sync_status: SyncStatus | None = None,
        workflow_status: WorkflowStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ContactSubmissionRead]:
        result = list(self._submissions.values())
        if sync_status is not None:
            result = [s for s in result if s.sync_status == sync_status]
        if workflow_status is not None:
            result = [s for s in result if s.workflow_status == workflow_status]
        if search:
            result = [s for s in result if search.lower() in f"{s.name} {s.email}".lower()]
        return result[offset: offset + limit]

    async def update_workflow_status(
        self, submission_id: str, workflow_status: WorkflowStatus
    ) -> ContactSubmissionRead | None:
        submission = self._submissions.get(submission_id)
        if submission is None:
            return None
        updated = submission.model_copy(update={"workflow_status": workflow_status})
        self._submissions[submission_id] = updated
        return updated

    # ── Site Users ──────────────────────────────────────────────────────────

    async def create_user(self, data: SiteUserCreate) -> SiteUserRead:
        email = data.email.strip().lower()
        if any(u.email == email for u in self._users.values()):
            raise DuplicateEmail(email)
        user_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        user = SiteUserRead(
            id=user_id,
            **data.model_dump(exclude={"email"}),
            email=email,
            created_at=now,
            updated_at=now,
        )
        self._users[user_id] = user
        return user

    async def get_user(self, user_id: str) -> SiteUserRead | None:
        return self._users.get(user_id)

    async def list_users(
        self,
        *,
        sync_status: SyncStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SiteUserRead]:
        result = list(self._users.values())
        if sync_status is not None:
            result = [u for u in result if u.sync_status == sync_status]
        return result[offset: offset + limit]

    # ── Generic Sync Access ─────────────────────────────────────────────────

    async def get_entity(self, entity_type: EntityType, entity_id: str) -> SyncableEntity | None:
        row = self._store(entity_type).get(entity_id)
        if row is None:
            return None
        if entity_type == EntityType.CONTACT_SUBMISSION:
            return submission_entity(row)
        if entity_type == EntityType.USER:
            return user_entity(row)
        return order_entity(row)

    async def save_sync_record(
        self, entity_type: EntityType, entity_id: str, record: SyncRecord
    ) -> bool:
        store = self._store(entity_type)
        row = store.get(entity_id)
        if row is None:
            return False
        self.saved.append((entity_type, entity_id, record))
        store[entity_id] = row.model_copy(update=record.model_dump())
        return True

    async def save_lead_id(self, entity_type: EntityType, entity_id: str, lead_id: str) -> bool:
        submission = self._submissions.get(entity_id)
        if entity_type != EntityType.CONTACT_SUBMISSION or submission is None:
            return False
        self._submissions[entity_id] = submission.model_copy(update={"crm_lead_id": lead_id})
        return True

    async def list_ids(
        self,
        entity_type: EntityType,
        statuses: Iterable[SyncStatus] | None = None,
    ) -> list[str]:
        rows = self._store(entity_type)
        if statuses is None:
            return list(rows)
        wanted = set(statuses)
        return [i for i, row in rows.items() if row.sync_status in wanted]

    async def delete_many(self, entity_type: EntityType, entity_ids: Iterable[str]) -> int:
        store = self._store(entity_type)
        deleted = 0
        for entity_id in entity_ids:
            if store.pop(entity_id, None) is not None:
                deleted += 1
        return deleted

    async def stats(self, entity_type: EntityType) -> SyncStats:
        rows = list(self._store(entity_type).values())
        return SyncStats(
            total=len(rows),
            **{
                status.value: sum(1 for r in rows if r.sync_status == status)
                for status in SyncStatus
            },
        )

    # ── Audit Log ───────────────────────────────────────────────────────────

    async def record_audit(self, entry: SyncAuditEntry) -> None:
        self.audit.append(entry)

    async def list_audit(
        self,
        *,
        entity_type: EntityType | None = None,
        entity_id: str | None = None,
        limit: int = 100,
    ) -> list[SyncAuditEntry]:
        result = list(reversed(self.audit))
        if entity_type is not None:
            result = [e for e in result if e.entity_type == entity_type]
        if entity_id is not None:
            result = [e for e in result if e.entity_id == entity_id]
        return result[:limit]

    # ── Test Helpers ────────────────────────────────────────────────────────

    def record_of(self, entity_type: EntityType, entity_id: str) -> SyncRecord:
        row = self._store(entity_type)[entity_id]
        return SyncRecord(
            sync_status=row.sync_status,
            external_id=row.external_id,
            last_error=row.last_error,
            synced_at=row.synced_at,
        )


class InMemoryIntegrationSettingsRepository:
    """In-memory IntegrationSettingsRepository; stored is None until a save."""

    def __init__(self) -> None:
        self.stored: SuiteDashSettings | None = None
        self.saves = 0

    async def get_suitedash(self) -> SuiteDashSettings | None:
        return self.stored

    async def save_suitedash(self, data: SuiteDashSettings) -> SuiteDashSettings:
        self.saves += 1
        self.stored = data
        return data


def fake_client_for(integration: SuiteDashSettings) -> FakeCRMClient:
    """Client factory double: configured exactly when SuiteDashClient would be."""
    return FakeCRMClient(
        configured=bool(
            integration.enabled
            and integration.api_url
            and integration.public_id
            and integration.secret_key
        ),
        invoicing=integration.invoicing_enabled,
        production=integration.production,
    )


# ── Factories ────────────────────────────────────────────────────────────────


def _submission_data(**overrides) -> ContactSubmissionCreate:
    defaults = {
        "name": "Ada Lovelace",
        "email": "ada@example.com",
        "phone": "+44 20 7946 0000",
        "company": "Analytical Engines Ltd",
        "pillar_name": "Digital Strategy",
        "message": "We would like a strategy workshop.",
    }
    defaults.update(overrides)
    return ContactSubmissionCreate(**defaults)


def _order_data(**overrides) -> OrderCreate:
    defaults = {
        "customer": {
            "firstName": "Grace",
            "lastName": "Hopper",
            "email": "grace@example.com",
            "company": "Navy Labs",
        },
        "items": [
            {
                "id": "svc-1",
                "title": "Strategy Workshop",
                "price": 1500.0,
                "pillarName": "Digital Strategy",
                "quantity": 1,
            },
            {
                "id": "svc-2",
                "title": "Follow-up Session",
                "price": 249.99,
                "pillarName": "Digital Strategy",
                "quantity": 2,
            },
        ],
        "notes": "Prefer mornings",
    }
    defaults.update(overrides)
    return OrderCreate.model_validate(defaults)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def crm() -> FakeCRMClient:
    return FakeCRMClient()


@pytest.fixture
def order_repo() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def sync_repo(order_repo) -> InMemorySyncRepository:
    return InMemorySyncRepository(order_repo)


@pytest.fixture
def engine(crm, sync_repo) -> SyncEngine:
    return SyncEngine(crm, sync_repo, call_timeout=2.0, max_concurrency=3)


@pytest.fixture
def orchestrator(engine, crm) -> FulfillmentOrchestrator:
    return FulfillmentOrchestrator(engine, crm)


@pytest.fixture
def order_service(order_repo, orchestrator) -> OrderService:
    return OrderService(order_repo, orchestrator, clock=lambda: 1_760_000_123.0)


@pytest.fixture
def make_crm():
    """FakeCRMClient constructor, for tests that need non-default id prefixes."""
    return FakeCRMClient


@pytest.fixture
def make_submission():
    """Factory for ContactSubmissionCreate payloads."""
    return _submission_data


@pytest.fixture
def make_order():
    """Factory for OrderCreate payloads (camelCase wire shape)."""
    return _order_data


@pytest.fixture
def integration_repo() -> InMemoryIntegrationSettingsRepository:
    return InMemoryIntegrationSettingsRepository()


@pytest.fixture
def client_factory():
    """Builds FakeCRMClient instances from SuiteDash settings."""
    return fake_client_for
