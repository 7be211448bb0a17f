"""
Order Engine — Orders API

All routes are scoped to an outlet; an order id from another outlet is
reported as not found. Engine errors are turned into responses by the
application-level handler in main.py.
"""
from datetime import date

from fastapi import APIRouter, Depends, Query, status

from order_engine.api.deps import get_clock, get_current_user, get_uow
from order_engine.core.clock import Clock
from order_engine.core.commands import UpdateItem
from order_engine.db import order_ops, status_ops
from order_engine.db.interfaces import ItemAggregate, UnitOfWork
from order_engine.schemas.order import (
    ItemChangeResponse,
    ItemStatusUpdateRequest,
    OrderDetailResponse,
    OrderItemBase,
    OrderItemRequest,
    OrderItemResponse,
    OrderListResponse,
    OrderRequest,
    OrderResponse,
    StatusUpdateRequest,
    UpdateItemRequest,
)

router = APIRouter(prefix="/outlets/{outlet_id}/orders", tags=["orders"])


@router.post("", response_model=OrderDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    outlet_id: str,
    payload: OrderRequest,
    user_id: str = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    """
    Place an order. Prices are taken from the catalog at this moment and
    frozen on the order; the order number is assigned here.
    Idempotency enforced by IdempotencyMiddleware.
    """
    aggregate = await order_ops.create_order(uow, payload.to_command(outlet_id, user_id), clock)
    return OrderDetailResponse.from_aggregate(aggregate)


@router.get("", response_model=OrderListResponse)
async def list_orders(
    outlet_id: str,
    status_filter: str | None = Query(None, alias="status"),
    order_type: str | None = Query(None, alias="type"),
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int | None = None,
    offset: int = 0,
    uow: UnitOfWork = Depends(get_uow),
):
    """Newest first; limit defaults to 20 and is capped at 100."""
    page = await order_ops.list_orders(
        uow, outlet_id, status_filter, order_type, start_date, end_date, limit, offset
    )
    return OrderListResponse.from_page(page)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(outlet_id: str, order_id: str, uow: UnitOfWork = Depends(get_uow)):
    aggregate = await order_ops.get_order(uow, outlet_id, order_id)
    return OrderDetailResponse.from_aggregate(aggregate)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_status(
    outlet_id: str,
    order_id: str,
    payload: StatusUpdateRequest,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    """
    Compare-and-swap status change. 409 `stale_status` means the order moved
    since the client last read it; re-read and decide again.
    """
    order = await status_ops.transition_status(
        uow, outlet_id, order_id, payload.expected_status.value, payload.status.value, clock
    )
    return OrderResponse.model_validate(order)


@router.delete("/{order_id}", response_model=OrderResponse)
async def cancel_order(
    outlet_id: str,
    order_id: str,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    order = await status_ops.cancel_order(uow, outlet_id, order_id, clock)
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/recalculate", response_model=OrderResponse)
async def recalculate(
    outlet_id: str,
    order_id: str,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    order = await order_ops.recalculate_totals(uow, outlet_id, order_id, clock)
    return OrderResponse.model_validate(order)


# ── Items ─────────────────────────────────────────────────────────────────────
def _item_change(item: ItemAggregate, order) -> ItemChangeResponse:
    return ItemChangeResponse(
        item=OrderItemResponse.from_aggregate(item),
        order=OrderResponse.model_validate(order),
    )


@router.post("/{order_id}/items", response_model=ItemChangeResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    outlet_id: str,
    order_id: str,
    payload: OrderItemRequest,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    item, order = await order_ops.add_item(uow, outlet_id, order_id, payload.to_line(), clock)
    return _item_change(item, order)


@router.put("/{order_id}/items/{item_id}", response_model=ItemChangeResponse)
async def update_item(
    outlet_id: str,
    order_id: str,
    item_id: str,
    payload: UpdateItemRequest,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    cmd = UpdateItem(
        outlet_id=outlet_id,
        order_id=order_id,
        item_id=item_id,
        quantity=payload.quantity,
        notes=payload.notes,
    )
    item, order = await order_ops.update_item(uow, cmd, clock)
    return _item_change(item, order)


@router.delete("/{order_id}/items/{item_id}", response_model=OrderResponse)
async def remove_item(
    outlet_id: str,
    order_id: str,
    item_id: str,
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    order = await order_ops.remove_item(uow, outlet_id, order_id, item_id, clock)
    return OrderResponse.model_validate(order)


@router.patch("/{order_id}/items/{item_id}/status", response_model=OrderItemBase)
async def update_item_status(
    outlet_id: str,
    order_id: str,
    item_id: str,
    payload: ItemStatusUpdateRequest,
    uow: UnitOfWork = Depends(get_uow),
):
    item = await status_ops.transition_item_status(
        uow, outlet_id, order_id, item_id, payload.expected_status.value, payload.status.value
    )
    return OrderItemBase.model_validate(item)
