"""Order API routes.

Learn: These routes are the HTTP interface to the OrderService. Routes just
translate HTTP to service calls and domain errors to status codes; the
service emits the real-time events. A client that sees a 2xx here will
also see the matching order_update on its WebSocket (if connected).

Key patterns:
- POST for creation and bulk changes
- PATCH for partial updates
- Query params for filtering (status, search) and offset paging
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from orderpulse.models import OrderItem
from orderpulse.schemas.order import (
    BulkStatusUpdate,
    OrderCreate,
    OrderPage,
    OrderPatch,
    OrderRead,
)
from orderpulse.services.order_service import (
    InvalidStatusError,
    OrderNotFoundError,
    OrderService,
)

router = APIRouter()


def _order_svc(request: Request) -> OrderService:
    return request.app.state.container.order_service


@router.post("/orders", response_model=OrderRead, status_code=201)
async def create_order(
    body: OrderCreate,
    svc: OrderService = Depends(_order_svc),
):
    """Create a new order in 'pending' status."""
    return await svc.create_order(
        customer_name=body.customer_name,
        amount=body.amount,
        customer_email=body.customer_email,
        items=[OrderItem(**item.model_dump()) for item in body.items] or None,
    )


@router.get("/orders", response_model=OrderPage)
async def list_orders(
    status: Optional[str] = Query(None, description="Filter by status"),
    search: Optional[str] = Query(None, description="Match name, email, id or status"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    svc: OrderService = Depends(_order_svc),
):
    """List orders newest first, with optional filters."""
    orders, next_offset = svc.list_orders(
        status=status, search=search, limit=limit, offset=offset,
    )
    return OrderPage(
        orders=[OrderRead.model_validate(o) for o in orders],
        next_offset=next_offset,
    )


@router.get("/orders/metrics")
async def order_metrics(svc: OrderService = Depends(_order_svc)):
    """Current counters plus today's totals."""
    return {**svc.realtime_stats(), "metrics": svc.metrics()}


@router.post("/orders/bulk-status", response_model=list[OrderRead])
async def bulk_update_status(
    body: BulkStatusUpdate,
    svc: OrderService = Depends(_order_svc),
):
    """Set one status on many orders. Unknown ids are skipped.

    Learn: Clients receive the whole batch as one bulk_order_update array.
    """
    return await svc.bulk_update_status(body.order_ids, body.status)


@router.get("/orders/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: str,
    svc: OrderService = Depends(_order_svc),
):
    order = svc.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.patch("/orders/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: str,
    body: OrderPatch,
    svc: OrderService = Depends(_order_svc),
):
    """Partially update an order (name, email, amount, status)."""
    try:
        return await svc.update_order(order_id, **body.model_dump(exclude_none=True))
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStatusError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.delete("/orders/{order_id}", status_code=204)
async def delete_order(
    order_id: str,
    svc: OrderService = Depends(_order_svc),
):
    try:
        await svc.delete_order(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(status_code=204)
