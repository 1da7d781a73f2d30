"""Public checkout endpoints.

POST /api/v1/orders places an order and returns its classified fulfillment
synchronously, so the checkout page can redirect to the payment link at once.
The confirmation endpoint re-reads the stored fulfillment.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

from src.consultancy.api.deps import get_order_service
from src.consultancy.orders.repository import DuplicateOrderNumber
from src.consultancy.orders.schemas import OrderConfirmation, OrderCreate, OrderPlaced

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@router.post("", response_model=OrderPlaced, status_code=201)
async def place_order(body: OrderCreate, request: Request) -> OrderPlaced:
    """Create an order. CRM trouble yields fulfillment.mode=deferred_invoice, never an error."""
    service = get_order_service(request)
    try:
        return await service.place_order(body)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except DuplicateOrderNumber as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Could not allocate an order number, please retry",
        ) from exc


@router.get("/{order_number}/confirmation", response_model=OrderConfirmation)
async def get_confirmation(order_number: str, request: Request) -> OrderConfirmation:
    """Stored fulfillment for the checkout confirmation page."""
    service = get_order_service(request)
    confirmation = await service.get_confirmation(order_number)
    if confirmation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order not found: {order_number}",
        )
    return confirmation
