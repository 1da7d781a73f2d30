"""Order placement and checkout confirmation.

OrderService persists the order before any CRM traffic, hands it to the
FulfillmentOrchestrator, and stores the classified fulfillment exactly once.
The confirmation page reads that stored fulfillment back.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog

from src.consultancy.orders.fulfillment import FulfillmentOrchestrator
from src.consultancy.orders.repository import DuplicateOrderNumber
from src.consultancy.orders.schemas import (
    FulfillmentMode,
    OrderConfirmation,
    OrderCreate,
    OrderFulfillment,
    OrderItem,
    OrderPlaced,
    OrderRead,
)

logger = structlog.get_logger(__name__)

ORDER_NUMBER_PREFIX = "ORD-"
_CENTS = Decimal("0.01")


def compute_total(items: list[OrderItem]) -> float:
    """Sum of price x quantity, rounded half-up to cents."""
    total = sum(
        (Decimal(str(item.price)) * item.quantity for item in items), Decimal("0")
    )
    return float(total.quantize(_CENTS, rounding=ROUND_HALF_UP))


def make_order_number(epoch_ms: int) -> str:
    """'ORD-' + the last eight digits of a millisecond timestamp."""
    return f"{ORDER_NUMBER_PREFIX}{epoch_ms % 10**8:08d}"


class OrderService:
    """Places orders and serves their confirmation.

    Args:
        repository: OrderRepository (or a double with the same methods).
        orchestrator: FulfillmentOrchestrator for the CRM side.
        clock: Returns seconds since the epoch; injectable for tests.
        max_number_attempts: Order-number collisions tolerated before giving up.
    """

    def __init__(
        self,
        repository: Any,
        orchestrator: FulfillmentOrchestrator,
        *,
        clock: Callable[[], float] = time.time,
        max_number_attempts: int = 5,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._clock = clock
        self._max_number_attempts = max(1, max_number_attempts)

    async def place_order(self, data: OrderCreate) -> OrderPlaced:
        """Persist the order, classify its fulfillment, store the result.

        CRM failures never surface here; they yield deferred_invoice.

        Raises:
            ValueError: The order has no items.
            DuplicateOrderNumber: Every generated order number collided.
        """
        if not data.items:
            raise ValueError("Order must contain at least one item")

        total = compute_total(data.items)
        order = await self._create_with_unique_number(data, total)
        log = logger.bind(order_id=order.id, order_number=order.order_number)
        log.info("order.created", total=total, items=len(data.items))

        fulfillment = await self._orchestrator.fulfill(order)
        try:
            saved = await self._repository.save_fulfillment(order.id, fulfillment)
        except Exception:
            log.exception("order.fulfillment_not_stored", mode=fulfillment.mode.value)
            fulfillment = OrderFulfillment(mode=FulfillmentMode.DEFERRED_INVOICE)
        else:
            if not saved:
                log.warning("order.fulfillment_not_stored", reason="order row missing")
                fulfillment = OrderFulfillment(mode=FulfillmentMode.DEFERRED_INVOICE)

        return OrderPlaced(
            order_id=order.id,
            order_number=order.order_number,
            total=total,
            fulfillment=fulfillment,
        )

    async def _create_with_unique_number(self, data: OrderCreate, total: float) -> OrderRead:
        epoch_ms = int(self._clock() * 1000)
        candidates = [
            make_order_number(epoch_ms + attempt)
            for attempt in range(self._max_number_attempts)
        ]
        for order_number in candidates:
            try:
                return await self._repository.create_order(order_number, data, total)
            except DuplicateOrderNumber:
                logger.warning("order.number_collision", order_number=order_number)
        raise DuplicateOrderNumber(candidates[-1])

    async def get_confirmation(self, order_number: str) -> OrderConfirmation | None:
        """Stored fulfillment for the checkout confirmation page."""
        order = await self._repository.get_by_number(order_number)
        if order is None:
            return None
        return OrderConfirmation(
            order_number=order.order_number,
            total=order.total,
            fulfillment=order.fulfillment,
        )
