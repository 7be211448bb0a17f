"""
Order Engine — Status transition guard

Order lifecycle:   NEW → PREPARING → READY → COMPLETED
                   NEW | PREPARING | READY → CANCELLED
Item lifecycle:    PENDING → PREPARING → READY

Every transition is a compare-and-swap: the UPDATE carries the status the
caller believes is current, and zero affected rows means someone else moved
the order first. The caller gets StaleStatusError with the actual status and
decides whether to retry.
"""
import logging
from decimal import Decimal

from order_engine.core.clock import Clock, SystemClock
from order_engine.core.errors import (
    InvalidStatusError,
    InvalidTransitionError,
    OrderClosedError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    OrderNotPaidError,
    StaleStatusError,
)
from order_engine.core.money import to_money
from order_engine.db.interfaces import Transaction, UnitOfWork
from order_engine.models.order import (
    CLOSED_STATUSES,
    CateringStatus,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    OrderType,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.NEW:       frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY:     frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
}

ALLOWED_ITEM_TRANSITIONS: dict[OrderItemStatus, frozenset[OrderItemStatus]] = {
    OrderItemStatus.PENDING:   frozenset({OrderItemStatus.PREPARING}),
    OrderItemStatus.PREPARING: frozenset({OrderItemStatus.READY}),
}


def _parse(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidStatusError(f"invalid {label} {value!r}")


def validate_transition(current: OrderStatus, new: OrderStatus) -> None:
    if new not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"cannot transition from {current.value} to {new.value}",
            current_status=current.value,
        )


def validate_item_transition(current: OrderItemStatus, new: OrderItemStatus) -> None:
    if new not in ALLOWED_ITEM_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"cannot transition item from {current.value} to {new.value}",
            current_status=current.value,
        )


async def _stale_or_missing(tx: Transaction, outlet_id: str, order_id: str, expected: str):
    current = await tx.orders.get_order(outlet_id, order_id)
    if current is None:
        return OrderNotFoundError()
    logger.info("Stale status on order %s: expected %s, found %s", order_id, expected, current.status)
    return StaleStatusError(
        f"order status is {current.status}, not {expected}",
        expected_status=expected,
        current_status=current.status,
    )


async def compare_and_set(tx: Transaction, outlet_id: str, order_id: str, expected: str,
                          new: str, clock: Clock) -> Order:
    """Conditional status update inside an already open transaction."""
    updated = await tx.orders.compare_and_set_status(outlet_id, order_id, expected, new, clock.now())
    if updated is None:
        raise await _stale_or_missing(tx, outlet_id, order_id, expected)
    if new == OrderStatus.CANCELLED.value and updated.order_type == OrderType.CATERING.value:
        updated = await tx.orders.set_catering_status(updated.id, CateringStatus.CANCELLED.value, clock.now())
    if new == OrderStatus.COMPLETED.value:
        logger.info("Order %s completed", order_id)
    return updated


async def settle_if_paid(tx: Transaction, order: Order, paid: Decimal, clock: Clock) -> Order:
    """
    Complete a locked open order once `paid` covers its total; catering
    orders are marked SETTLED first. Below the total the order is returned
    unchanged.
    """
    if paid < to_money(order.total_amount):
        return order
    if order.order_type == OrderType.CATERING.value and order.catering_status != CateringStatus.SETTLED.value:
        order = await tx.orders.set_catering_status(order.id, CateringStatus.SETTLED.value, clock.now())
    if order.status not in CLOSED_STATUSES:
        order = await compare_and_set(tx, order.outlet_id, order.id, order.status,
                                      OrderStatus.COMPLETED.value, clock)
    return order


async def transition_status(uow: UnitOfWork, outlet_id: str, order_id: str, expected_status,
                            new_status, clock: Clock | None = None) -> Order:
    """
    Move an order from `expected_status` to `new_status`.

    Completing by hand is only allowed once completed payments cover the
    total; the order row is locked for that check so a concurrent payment
    cannot slip in between the read and the update.
    """
    expected = _parse(OrderStatus, expected_status, "expected_status")
    new = _parse(OrderStatus, new_status, "status")
    validate_transition(expected, new)
    clock = clock or SystemClock()

    async with uow.begin() as tx:
        if new is OrderStatus.COMPLETED:
            order = await tx.orders.lock_order(outlet_id, order_id)
            if order is None:
                raise OrderNotFoundError()
            if order.status != expected.value:
                raise await _stale_or_missing(tx, outlet_id, order_id, expected.value)
            paid = await tx.payments.sum_completed_payments(order.id)
            if paid < to_money(order.total_amount):
                raise OrderNotPaidError(total_paid=str(paid), total_amount=str(to_money(order.total_amount)))
        return await compare_and_set(tx, outlet_id, order_id, expected.value, new.value, clock)


async def cancel_order(uow: UnitOfWork, outlet_id: str, order_id: str,
                       clock: Clock | None = None) -> Order:
    """
    Cancel an order from whichever open status it is in. The precondition
    (not COMPLETED, not CANCELLED) is enforced by the UPDATE itself.
    """
    clock = clock or SystemClock()
    async with uow.begin() as tx:
        cancelled = await tx.orders.cancel_open_order(outlet_id, order_id, clock.now())
        if cancelled is None:
            current = await tx.orders.get_order(outlet_id, order_id)
            if current is None:
                raise OrderNotFoundError()
            if current.status == OrderStatus.COMPLETED.value:
                raise OrderClosedError("cannot cancel a completed order", status=current.status)
            raise OrderClosedError("order is already cancelled", status=current.status)
        if cancelled.order_type == OrderType.CATERING.value:
            cancelled = await tx.orders.set_catering_status(
                cancelled.id, CateringStatus.CANCELLED.value, clock.now()
            )
    logger.info("Order %s cancelled", order_id)
    return cancelled


async def transition_item_status(uow: UnitOfWork, outlet_id: str, order_id: str, item_id: str,
                                 expected_status, new_status) -> OrderItem:
    """Kitchen status change for a single item, compare-and-swap like orders."""
    expected = _parse(OrderItemStatus, expected_status, "expected_status")
    new = _parse(OrderItemStatus, new_status, "status")
    validate_item_transition(expected, new)

    async with uow.begin() as tx:
        order = await tx.orders.get_order(outlet_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        if order.status in CLOSED_STATUSES:
            raise OrderClosedError(f"cannot update items on a {order.status} order", status=order.status)
        updated = await tx.orders.compare_and_set_item_status(order.id, item_id, expected.value, new.value)
        if updated is None:
            current = await tx.orders.get_item(order.id, item_id)
            if current is None:
                raise OrderItemNotFoundError()
            raise StaleStatusError(
                f"item status is {current.status}, not {expected.value}",
                expected_status=expected.value,
                current_status=current.status,
            )
        return updated
