"""Order API routes.

Learn: Routes translate HTTP to service calls and service exceptions to
HTTP errors. They never talk to the relay: a committed mutation reaches
WebSocket clients through the database trigger, not through the API.

Paths are unversioned (/orders, /verify-triggers) because the bundled
demo frontend calls them directly.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from orderrelay.db.engine import get_db
from orderrelay.schemas.order import (
    OrderCreate,
    OrderRead,
    OrderStatusUpdate,
    TriggerReport,
)
from orderrelay.services.order_service import OrderNotFoundError, OrderService

router = APIRouter()


def _order_svc(db: AsyncSession = Depends(get_db)) -> OrderService:
    return OrderService(db)


@router.get("/orders", response_model=list[OrderRead])
async def list_orders(svc: OrderService = Depends(_order_svc)):
    """List all orders, newest first."""
    return await svc.list_orders()


@router.post("/orders", response_model=OrderRead, status_code=201)
async def create_order(
    body: OrderCreate,
    svc: OrderService = Depends(_order_svc),
):
    """Create an order. Clients are notified via the orders trigger."""
    return await svc.create_order(
        customer_name=body.customer_name,
        product_name=body.product_name,
        status=body.status,
    )


@router.put("/orders/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: int,
    body: OrderStatusUpdate,
    svc: OrderService = Depends(_order_svc),
):
    """Change an order's status."""
    try:
        return await svc.update_status(order_id, body.status)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.delete("/orders/{order_id}", response_model=OrderRead)
async def delete_order(
    order_id: int,
    svc: OrderService = Depends(_order_svc),
):
    """Delete an order and return it."""
    try:
        return await svc.delete_order(order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.get("/verify-triggers", response_model=TriggerReport)
async def verify_triggers(svc: OrderService = Depends(_order_svc)):
    """Check that the orders change trigger is installed."""
    return await svc.verify_triggers()
