"""Order persistence model.

Orders carry the customer's CRM link (SyncFieldsMixin) plus the fulfillment
fields written once by OrderService after the orchestrator classifies the
order. The confirmation page re-reads fulfillment_mode; it is never
recomputed.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.consultancy.core.database import Base
from src.consultancy.sync.models import SyncFieldsMixin


class OrderModel(SyncFieldsMixin, Base):
    """Checkout order for one or more consultancy services."""

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    order_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    customer_first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_last_name: Mapped[str] = mapped_column(
        String(100), nullable=False, default="", server_default=text("''")
    )
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_company: Mapped[str | None] = mapped_column(String(200), nullable=True)
    items: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default=text("'pending'")
    )
    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unpaid", server_default=text("'unpaid'")
    )
    fulfillment_mode: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="deferred_invoice",
        server_default=text("'deferred_invoice'"),
    )
    payment_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    crm_contact_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    crm_invoice_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
