"""CRM client abstract base class -- the only seam crossing the trust boundary.

Every CRM backend (SuiteDash today) implements this ABC. The SyncEngine and
the FulfillmentOrchestrator depend on it, never on a vendor module.

Contract:
- is_configured() is False when credentials are missing; every network
  operation must then raise NotConfigured without doing any I/O.
- supports_invoicing() is fixed at construction time; create_invoice on a
  client without it raises CapabilityUnavailable immediately.
- Failures are raised as CrmError subclasses (see crm.errors).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.consultancy.crm.errors import CapabilityUnavailable
from src.consultancy.crm.schemas import (
    ConnectionCheck,
    ContactProfile,
    CrmContact,
    CrmInvoice,
    LeadCreate,
    LineItem,
)


class CRMClient(ABC):
    """Abstract interface for CRM backend operations.

    Methods:
        is_configured: True only when credentials are present.
        supports_invoicing: True when invoice creation is available.
        is_production: Explicit production flag, None when unknown.
        upsert_contact: Find-or-create a contact by email.
        create_invoice: Create an invoice for a known contact.
        create_lead: Optional -- attach a lead to a contact.
        test_connection: Connectivity probe, never raises.
    """

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True only when credentials are present."""
        ...

    @abstractmethod
    def supports_invoicing(self) -> bool:
        """Return True when invoice creation is available on this account."""
        ...

    def is_production(self) -> bool | None:
        """Explicit production flag; None means unknown."""
        return None

    @abstractmethod
    async def upsert_contact(self, profile: ContactProfile) -> CrmContact:
        """Create or update a contact keyed by email. Must not create duplicates."""
        ...

    @abstractmethod
    async def create_invoice(
        self,
        contact_ref: str,
        line_items: list[LineItem],
        *,
        reference: str | None = None,
    ) -> CrmInvoice:
        """Create an invoice for contact_ref, return the CRM invoice."""
        ...

    async def create_lead(self, contact_ref: str, lead: LeadCreate) -> str:
        """Create a lead for contact_ref, return its external ID."""
        raise CapabilityUnavailable("leads")

    async def test_connection(self) -> ConnectionCheck:
        """Probe the CRM. Default: report configuration state only."""
        if not self.is_configured():
            return ConnectionCheck(success=False, message="CRM not configured")
        return ConnectionCheck(
            success=True,
            message="Configured (no connectivity probe available)",
            invoicing_available=self.supports_invoicing(),
        )
