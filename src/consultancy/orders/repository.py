"""Order repository -- async persistence for checkout orders.

Owns order creation and the fulfillment columns. The customer's sync columns
on the same table belong to SyncRepository.save_sync_record.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.consultancy.orders.models import OrderModel
from src.consultancy.orders.schemas import (
    FulfillmentMode,
    OrderCreate,
    OrderFulfillment,
    OrderItem,
    OrderRead,
)
from src.consultancy.sync.schemas import SyncStatus

logger = structlog.get_logger(__name__)


class DuplicateOrderNumber(Exception):
    """The generated order number is already taken."""

    def __init__(self, order_number: str) -> None:
        super().__init__(f"Order number already exists: {order_number}")
        self.order_number = order_number


def model_to_order(model: OrderModel) -> OrderRead:
    """Convert OrderModel to OrderRead schema."""
    return OrderRead(
        id=str(model.id),
        order_number=model.order_number,
        customer_first_name=model.customer_first_name,
        customer_last_name=model.customer_last_name,
        customer_email=model.customer_email,
        customer_phone=model.customer_phone,
        customer_company=model.customer_company,
        items=[OrderItem.model_validate(i) for i in (model.items or [])],
        notes=model.notes,
        total=model.total,
        status=model.status,
        payment_status=model.payment_status,
        fulfillment_mode=FulfillmentMode(model.fulfillment_mode),
        payment_url=model.payment_url,
        crm_contact_id=model.crm_contact_id,
        crm_invoice_id=model.crm_invoice_id,
        sync_status=SyncStatus(model.sync_status),
        external_id=model.external_id,
        last_error=model.last_error,
        synced_at=model.synced_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class OrderRepository:
    """Async repository for orders.

    Args:
        session_factory: Async callable yielding AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_order(
        self, order_number: str, data: OrderCreate, total: float
    ) -> OrderRead:
        """Insert a pending, unpaid order.

        Raises:
            DuplicateOrderNumber: order_number collides with an existing order.
        """
        async for session in self._session_factory():
            model = OrderModel(
                order_number=order_number,
                customer_first_name=data.customer.first_name,
                customer_last_name=data.customer.last_name,
                customer_email=data.customer.email.strip().lower(),
                customer_phone=data.customer.phone,
                customer_company=data.customer.company,
                items=[i.model_dump(mode="json", by_alias=True) for i in data.items],
                notes=data.notes,
                total=total,
                status="pending",
                payment_status="unpaid",
                fulfillment_mode=FulfillmentMode.DEFERRED_INVOICE.value,
                sync_status=SyncStatus.UNSYNCED.value,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateOrderNumber(order_number) from exc
            await session.refresh(model)
            return model_to_order(model)
        raise RuntimeError("session factory yielded no session")

    async def get_order(self, order_id: str) -> OrderRead | None:
        try:
            pk = uuid.UUID(str(order_id))
        except ValueError:
            return None
        async for session in self._session_factory():
            model = await session.get(OrderModel, pk)
            return model_to_order(model) if model is not None else None
        return None

    async def get_by_number(self, order_number: str) -> OrderRead | None:
        async for session in self._session_factory():
            stmt = select(OrderModel).where(OrderModel.order_number == order_number)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return model_to_order(model) if model is not None else None
        return None

    async def list_orders(
        self,
        *,
        sync_status: SyncStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[OrderRead]:
        async for session in self._session_factory():
            stmt = select(OrderModel)
            if sync_status is not None:
                stmt = stmt.where(OrderModel.sync_status == sync_status.value)
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(
                        OrderModel.order_number.ilike(pattern),
                        OrderModel.customer_email.ilike(pattern),
                        OrderModel.customer_last_name.ilike(pattern),
                    )
                )
            stmt = stmt.order_by(OrderModel.created_at.desc()).limit(limit).offset(offset)
            result = await session.execute(stmt)
            return [model_to_order(m) for m in result.scalars().all()]
        return []

    async def save_fulfillment(self, order_id: str, fulfillment: OrderFulfillment) -> bool:
        """Write the fulfillment columns once. Returns False if the order is gone."""
        async for session in self._session_factory():
            stmt = (
                update(OrderModel)
                .where(OrderModel.id == uuid.UUID(order_id))
                .values(
                    fulfillment_mode=fulfillment.mode.value,
                    payment_url=fulfillment.payment_url,
                    crm_contact_id=fulfillment.crm_contact_id,
                    crm_invoice_id=fulfillment.crm_invoice_id,
                )
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0
        return False
