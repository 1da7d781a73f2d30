"""Pydantic schemas for checkout orders and their fulfillment.

The public order API speaks camelCase (``firstName``, ``orderNumber``);
models accept either spelling and serialize by alias. The nested fulfillment
object keeps snake_case keys.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

from src.consultancy.sync.schemas import SyncStatus

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Enums ───────────────────────────────────────────────────────────────────


class FulfillmentMode(str, Enum):
    """How the checkout completes for the customer."""

    PAID_REDIRECT = "paid_redirect"
    SANDBOX_DEMO = "sandbox_demo"
    DEFERRED_INVOICE = "deferred_invoice"


class ConfirmationMessage(str, Enum):
    """Which message the confirmation page renders."""

    PAY_NOW = "pay_now"
    DEMO_NOTICE = "demo_notice"
    INVOICE_TO_FOLLOW = "invoice_to_follow"


# ── Order Input ─────────────────────────────────────────────────────────────


class CustomerInfo(BaseModel):
    model_config = _CAMEL

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(default="", max_length=100)
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str | None = Field(default=None, max_length=50)
    company: str | None = Field(default=None, max_length=200)


class OrderItem(BaseModel):
    """One service in the cart."""

    model_config = _CAMEL

    service_id: str = Field(..., alias="id")
    title: str = Field(..., min_length=1, max_length=300)
    price: float = Field(..., ge=0)
    pillar_name: str | None = None
    quantity: int = Field(default=1, ge=1)


class OrderCreate(BaseModel):
    model_config = _CAMEL

    customer: CustomerInfo
    items: list[OrderItem]
    notes: str | None = Field(default=None, max_length=5000)


# ── Fulfillment ─────────────────────────────────────────────────────────────


class OrderFulfillment(BaseModel):
    """Classified outcome of the CRM side of an order.

    payment_url only survives on paid_redirect: a sandbox link must never be
    shown to a customer as a pay-now button.
    """

    mode: FulfillmentMode = FulfillmentMode.DEFERRED_INVOICE
    payment_url: str | None = None
    crm_contact_id: str | None = None
    crm_invoice_id: str | None = None

    @model_validator(mode="after")
    def _payment_url_only_when_payable(self) -> OrderFulfillment:
        if self.mode != FulfillmentMode.PAID_REDIRECT:
            self.payment_url = None
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def confirmation(self) -> ConfirmationMessage:
        if self.mode == FulfillmentMode.PAID_REDIRECT and self.payment_url:
            return ConfirmationMessage.PAY_NOW
        if self.mode == FulfillmentMode.SANDBOX_DEMO:
            return ConfirmationMessage.DEMO_NOTICE
        return ConfirmationMessage.INVOICE_TO_FOLLOW


# ── Order Read / Responses ──────────────────────────────────────────────────


class OrderRead(BaseModel):
    """Order as persisted (admin views and internal use)."""

    id: str
    order_number: str
    customer_first_name: str
    customer_last_name: str = ""
    customer_email: str
    customer_phone: str | None = None
    customer_company: str | None = None
    items: list[OrderItem] = Field(default_factory=list)
    notes: str | None = None
    total: float = 0.0
    status: str = "pending"
    payment_status: str = "unpaid"
    fulfillment_mode: FulfillmentMode = FulfillmentMode.DEFERRED_INVOICE
    payment_url: str | None = None
    crm_contact_id: str | None = None
    crm_invoice_id: str | None = None
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    external_id: str | None = None
    last_error: str | None = None
    synced_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def fulfillment(self) -> OrderFulfillment:
        return OrderFulfillment(
            mode=self.fulfillment_mode,
            payment_url=self.payment_url,
            crm_contact_id=self.crm_contact_id,
            crm_invoice_id=self.crm_invoice_id,
        )


class OrderPlaced(BaseModel):
    """Response of POST /orders."""

    model_config = _CAMEL

    order_id: str
    order_number: str
    total: float
    fulfillment: OrderFulfillment


class OrderConfirmation(BaseModel):
    """Response of GET /orders/{order_number}/confirmation."""

    model_config = _CAMEL

    order_number: str
    total: float
    fulfillment: OrderFulfillment
