"""Order fulfillment orchestrator -- classify how a new order completes.

Given a persisted order, sync the customer as a CRM contact (through the
SyncEngine, so the order's SyncRecord is updated the normal way), try to
create an invoice, and classify the result:

- paid_redirect: production invoice with a payment link; send the customer there
- sandbox_demo: the CRM answered from a sandbox/demo account; no real payment
- deferred_invoice: anything else; the invoice is sent later by hand

fulfill() never raises. Every failure degrades to deferred_invoice.
"""

from __future__ import annotations

import time
from collections.abc import Iterable

import structlog

from src.consultancy.core.monitoring import order_fulfillment_total
from src.consultancy.crm.adapter import CRMClient
from src.consultancy.crm.errors import CapabilityUnavailable, CrmError
from src.consultancy.crm.sandbox import DEFAULT_SANDBOX_PREFIXES, is_sandbox_result
from src.consultancy.crm.schemas import CrmInvoice, LineItem
from src.consultancy.orders.schemas import FulfillmentMode, OrderFulfillment, OrderRead
from src.consultancy.sync.engine import SyncEngine, bounded_call, elapsed_ms
from src.consultancy.sync.schemas import AuditAction, AuditStatus, EntityType

logger = structlog.get_logger(__name__)


def line_items_for(order: OrderRead) -> list[LineItem]:
    return [
        LineItem(description=item.title, unit_price=item.price, quantity=item.quantity)
        for item in order.items
    ]


class FulfillmentOrchestrator:
    """Drives contact sync + invoice creation for one order.

    Args:
        engine: SyncEngine used for the customer contact.
        client: CRM client for invoicing; defaults to the engine's client.
        sandbox_prefixes: Id prefixes identifying sandbox/demo CRM results.
    """

    def __init__(
        self,
        engine: SyncEngine,
        client: CRMClient | None = None,
        *,
        sandbox_prefixes: Iterable[str] = DEFAULT_SANDBOX_PREFIXES,
    ) -> None:
        self._engine = engine
        self._client = client or engine.client
        self._sandbox_prefixes = tuple(sandbox_prefixes)

    async def fulfill(self, order: OrderRead) -> OrderFulfillment:
        log = logger.bind(order_id=order.id, order_number=order.order_number)
        try:
            fulfillment = await self._fulfill(order)
        except Exception:
            log.exception("fulfillment.unexpected_error")
            fulfillment = OrderFulfillment(mode=FulfillmentMode.DEFERRED_INVOICE)

        order_fulfillment_total.labels(mode=fulfillment.mode.value).inc()
        log.info(
            "fulfillment.classified",
            mode=fulfillment.mode.value,
            crm_contact_id=fulfillment.crm_contact_id,
            crm_invoice_id=fulfillment.crm_invoice_id,
        )
        return fulfillment

    async def _fulfill(self, order: OrderRead) -> OrderFulfillment:
        outcome = await self._engine.sync_one(EntityType.ORDER, order.id)
        if not outcome.ok or outcome.record.external_id is None:
            return OrderFulfillment(mode=FulfillmentMode.DEFERRED_INVOICE)

        contact_id = outcome.record.external_id
        deferred = OrderFulfillment(
            mode=FulfillmentMode.DEFERRED_INVOICE, crm_contact_id=contact_id
        )

        if not self._client.supports_invoicing():
            await self._engine.audit(
                EntityType.ORDER, order.id, AuditAction.CREATE_INVOICE, AuditStatus.SKIPPED,
                error=CapabilityUnavailable("invoicing"),
            )
            return deferred

        invoice = await self._create_invoice(order, contact_id)
        if invoice is None:
            return deferred
        if not invoice.payment_url:
            return deferred.model_copy(update={"crm_invoice_id": invoice.id})

        explicit = invoice.is_production
        if explicit is None:
            explicit = self._client.is_production()
        sandbox = is_sandbox_result(
            contact_id=contact_id,
            invoice_id=invoice.id,
            explicit_production=explicit,
            prefixes=self._sandbox_prefixes,
        )
        if sandbox:
            logger.info(
                "fulfillment.sandbox_payment_url_withheld",
                order_id=order.id,
                invoice_id=invoice.id,
                payment_url=invoice.payment_url,
            )
            return OrderFulfillment(
                mode=FulfillmentMode.SANDBOX_DEMO,
                crm_contact_id=contact_id,
                crm_invoice_id=invoice.id,
            )

        return OrderFulfillment(
            mode=FulfillmentMode.PAID_REDIRECT,
            payment_url=invoice.payment_url,
            crm_contact_id=contact_id,
            crm_invoice_id=invoice.id,
        )

    async def _create_invoice(self, order: OrderRead, contact_id: str) -> CrmInvoice | None:
        """Returns None on any invoicing failure (already logged and audited)."""
        start = time.perf_counter()
        try:
            invoice = await bounded_call(
                self._client.create_invoice(
                    contact_id, line_items_for(order), reference=order.order_number
                ),
                self._engine.call_timeout,
            )
        except CrmError as exc:
            status = (
                AuditStatus.SKIPPED
                if isinstance(exc, CapabilityUnavailable)
                else AuditStatus.FAILED
            )
            await self._engine.audit(
                EntityType.ORDER, order.id, AuditAction.CREATE_INVOICE, status,
                error=exc, duration_ms=elapsed_ms(start),
            )
            logger.warning(
                "fulfillment.invoice_failed",
                order_id=order.id,
                error_kind=exc.kind,
                error=exc.message,
            )
            return None
        except Exception as exc:
            await self._engine.audit(
                EntityType.ORDER, order.id, AuditAction.CREATE_INVOICE, AuditStatus.FAILED,
                error_kind="unexpected", error_message=f"Unexpected CRM error: {exc}",
                duration_ms=elapsed_ms(start),
            )
            logger.exception("fulfillment.invoice_unexpected_error", order_id=order.id)
            return None

        await self._engine.audit(
            EntityType.ORDER, order.id, AuditAction.CREATE_INVOICE, AuditStatus.SUCCESS,
            external_id=invoice.id, duration_ms=elapsed_ms(start),
        )
        return invoice
