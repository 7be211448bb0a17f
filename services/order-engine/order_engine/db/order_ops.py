"""
Order Engine — Order writer

create_order persists an order, its items and their modifiers in a single
transaction: either the whole aggregate exists afterwards or none of it does.
Item editing after creation is only allowed while the order is NEW; every
edit locks the order row first and recalculates totals in the same
transaction.
"""
import logging
import uuid
from datetime import date

from order_engine.core.clock import Clock, SystemClock, business_date
from order_engine.core.commands import CreateOrder, OrderLine, UpdateItem
from order_engine.core.config import get_settings
from order_engine.core.errors import (
    InvalidOrderTypeError,
    InvalidQuantityError,
    InvalidStatusError,
    LastItemError,
    OrderClosedError,
    OrderItemNotFoundError,
    OrderNotEditableError,
    OrderNotFoundError,
    TotalBelowPaidError,
)
from order_engine.core.money import ZERO, to_money
from order_engine.core.pricing import (
    PricedLine,
    ValidatedOrder,
    discount_from_row,
    line_amounts,
    modifiers_total,
    order_totals,
    price_line,
    validate_line,
    validate_order,
)
from order_engine.db.interfaces import (
    CatalogLookup,
    ItemAggregate,
    OrderAggregate,
    OrderPage,
    OrderStore,
    Transaction,
    UnitOfWork,
)
from order_engine.db.order_numbers import allocate_order_number, with_order_number_retry
from order_engine.db.status_ops import settle_if_paid
from order_engine.models.order import (
    CLOSED_STATUSES,
    CateringStatus,
    Order,
    OrderItem,
    OrderItemModifier,
    OrderItemStatus,
    OrderStatus,
    OrderType,
)

settings = get_settings()
logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


async def resolve_line(catalog: CatalogLookup, outlet_id: str, index: int, line: OrderLine,
                       discount) -> PricedLine:
    """Look up the catalog snapshots a line names, then price it."""
    product = await catalog.get_product(outlet_id, line.product_id)
    variant = None
    if product is not None and line.variant_id:
        variant = await catalog.get_variant(line.variant_id)
    modifiers = []
    if product is not None:
        for mod in line.modifiers:
            modifiers.append(await catalog.get_modifier(mod.modifier_id))
    else:
        modifiers = [None] * len(line.modifiers)
    return price_line(index, line, discount, product, variant, modifiers)


async def _insert_line(store: OrderStore, order_id: str, line: PricedLine) -> ItemAggregate:
    item = await store.insert_item(OrderItem(
        id=str(uuid.uuid4()),
        order_id=order_id,
        product_id=line.product_id,
        variant_id=line.variant_id,
        quantity=line.quantity,
        unit_price=line.unit_price,
        discount_type=line.discount.type.value if line.discount else None,
        discount_value=line.discount.value if line.discount else None,
        discount_amount=line.discount_amount,
        subtotal=line.subtotal,
        notes=line.notes,
        station=line.station,
        status=OrderItemStatus.PENDING.value,
    ))
    mods = []
    for mod in line.modifiers:
        mods.append(await store.insert_item_modifier(OrderItemModifier(
            id=str(uuid.uuid4()),
            order_item_id=item.id,
            modifier_id=mod.modifier_id,
            quantity=mod.quantity,
            unit_price=mod.unit_price,
        )))
    return ItemAggregate(item=item, modifiers=mods)


@with_order_number_retry()
async def _create_order_tx(uow: UnitOfWork, validated: ValidatedOrder, clock: Clock) -> OrderAggregate:
    cmd = validated.command
    now = clock.now()

    async with uow.begin() as tx:
        priced = [
            await resolve_line(tx.catalog, cmd.outlet_id, i, line, validated.line_discounts[i])
            for i, line in enumerate(cmd.items)
        ]
        totals = order_totals((p.subtotal for p in priced), validated.discount)

        day = business_date(now, settings.BUSINESS_TIMEZONE)
        sequence, order_number = await allocate_order_number(tx.orders, cmd.outlet_id, day)

        is_catering = validated.order_type is OrderType.CATERING
        is_delivery = validated.order_type is OrderType.DELIVERY
        order = await tx.orders.insert_order(Order(
            id=str(uuid.uuid4()),
            outlet_id=cmd.outlet_id,
            order_number=order_number,
            business_date=day,
            daily_sequence=sequence,
            customer_id=cmd.customer_id or None,
            order_type=validated.order_type.value,
            status=OrderStatus.NEW.value,
            table_number=cmd.table_number or None,
            notes=cmd.notes or None,
            subtotal=totals.subtotal,
            discount_type=validated.discount.type.value if validated.discount else None,
            discount_value=validated.discount.value if validated.discount else None,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total,
            catering_date=validated.catering_date,
            catering_status=CateringStatus.BOOKED.value if is_catering else None,
            catering_dp_amount=validated.catering_dp_amount,
            delivery_platform=(cmd.delivery_platform or None) if is_delivery else None,
            delivery_address=(cmd.delivery_address or None) if is_delivery else None,
            created_by=cmd.created_by,
            created_at=now,
            updated_at=now,
        ))

        items = [await _insert_line(tx.orders, order.id, line) for line in priced]

    logger.info("Order %s created as %s for outlet %s (total=%s)",
                order.id, order.order_number, order.outlet_id, order.total_amount)
    return OrderAggregate(order=order, items=items)


async def create_order(uow: UnitOfWork, cmd: CreateOrder, clock: Clock | None = None) -> OrderAggregate:
    """
    Validate, price and persist a new order.

    Validation errors are raised before a transaction is opened. Catalog
    reference errors roll the transaction back. Order number collisions are
    retried transparently up to ORDER_NUMBER_MAX_ATTEMPTS times.
    """
    validated = validate_order(cmd)
    return await _create_order_tx(uow, validated, clock or SystemClock())


async def load_aggregate(store: OrderStore, order: Order) -> OrderAggregate:
    items = []
    for item in await store.list_items(order.id):
        items.append(ItemAggregate(item=item, modifiers=await store.list_item_modifiers(item.id)))
    return OrderAggregate(order=order, items=items)


async def get_order(uow: UnitOfWork, outlet_id: str, order_id: str) -> OrderAggregate:
    async with uow.begin() as tx:
        order = await tx.orders.get_order(outlet_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        return await load_aggregate(tx.orders, order)


async def list_orders(uow: UnitOfWork, outlet_id: str, status: str | None = None,
                      order_type: str | None = None, start_date: date | None = None,
                      end_date: date | None = None, limit: int | None = None,
                      offset: int = 0) -> OrderPage:
    """
    Orders of one outlet, newest first. start_date/end_date are inclusive
    business dates. A missing or non-positive limit falls back to
    DEFAULT_PAGE_SIZE and anything above MAX_PAGE_SIZE is capped.
    """
    if status:
        try:
            status = OrderStatus(status).value
        except ValueError:
            raise InvalidStatusError(f"invalid status {status!r}")
    if order_type:
        try:
            order_type = OrderType(order_type).value
        except ValueError:
            raise InvalidOrderTypeError(f"invalid order_type {order_type!r}")
    if not limit or limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    limit = min(limit, MAX_PAGE_SIZE)
    offset = max(offset or 0, 0)

    async with uow.begin() as tx:
        orders = await tx.orders.list_orders(outlet_id, status, order_type, start_date, end_date, limit, offset)
    return OrderPage(orders=orders, limit=limit, offset=offset)


# ── Totals ────────────────────────────────────────────────────────────────────
async def _recalculate(tx: Transaction, order: Order, clock: Clock) -> Order:
    """
    Recompute subtotal/discount/total from the order's current items. The
    caller holds the row lock, so the paid sum read here cannot move: a new
    total below it is refused, and a total it now covers completes the order.
    """
    items = await tx.orders.list_items(order.id)
    totals = order_totals(
        (to_money(i.subtotal) for i in items),
        discount_from_row(order.discount_type, order.discount_value),
        to_money(order.tax_amount),
    )
    paid = await tx.payments.sum_completed_payments(order.id)
    if totals.total < paid:
        raise TotalBelowPaidError(total_paid=str(paid), total_amount=str(totals.total))
    order = await tx.orders.update_totals(
        order, totals.subtotal, totals.discount_amount, totals.total, clock.now()
    )
    if paid > ZERO:
        order = await settle_if_paid(tx, order, paid, clock)
    return order


async def _lock_open_order(tx: Transaction, outlet_id: str, order_id: str) -> Order:
    order = await tx.orders.lock_order(outlet_id, order_id)
    if order is None:
        raise OrderNotFoundError()
    if order.status in CLOSED_STATUSES:
        raise OrderClosedError(f"cannot change a {order.status} order", status=order.status)
    return order


async def _lock_editable_order(tx: Transaction, outlet_id: str, order_id: str) -> Order:
    order = await _lock_open_order(tx, outlet_id, order_id)
    if order.status != OrderStatus.NEW.value:
        raise OrderNotEditableError(status=order.status)
    return order


async def recalculate_totals(uow: UnitOfWork, outlet_id: str, order_id: str,
                             clock: Clock | None = None) -> Order:
    """Re-derive the order's totals from its current line items."""
    async with uow.begin() as tx:
        order = await _lock_open_order(tx, outlet_id, order_id)
        return await _recalculate(tx, order, clock or SystemClock())


# ── Item editing (order must be NEW) ──────────────────────────────────────────
async def add_item(uow: UnitOfWork, outlet_id: str, order_id: str, line: OrderLine,
                   clock: Clock | None = None) -> tuple[ItemAggregate, Order]:
    discount = validate_line(0, line)
    clock = clock or SystemClock()
    async with uow.begin() as tx:
        order = await _lock_editable_order(tx, outlet_id, order_id)
        priced = await resolve_line(tx.catalog, outlet_id, 0, line, discount)
        added = await _insert_line(tx.orders, order.id, priced)
        order = await _recalculate(tx, order, clock)
    return added, order


async def update_item(uow: UnitOfWork, cmd: UpdateItem,
                      clock: Clock | None = None) -> tuple[ItemAggregate, Order]:
    """
    Change an item's quantity (and notes). The unit price and modifier
    prices stay the snapshots taken at creation; only the arithmetic reruns.
    """
    if cmd.quantity <= 0:
        raise InvalidQuantityError()
    clock = clock or SystemClock()
    async with uow.begin() as tx:
        order = await _lock_editable_order(tx, cmd.outlet_id, cmd.order_id)
        item = await tx.orders.get_item(order.id, cmd.item_id)
        if item is None:
            raise OrderItemNotFoundError()
        mods = await tx.orders.list_item_modifiers(item.id)
        amounts = line_amounts(
            to_money(item.unit_price),
            cmd.quantity,
            modifiers_total((to_money(m.unit_price), m.quantity) for m in mods),
            discount_from_row(item.discount_type, item.discount_value),
        )
        item.quantity = cmd.quantity
        item.discount_amount = amounts.discount_amount
        item.subtotal = amounts.subtotal
        if cmd.notes is not None:
            item.notes = cmd.notes or None
        item = await tx.orders.save_item(item)
        order = await _recalculate(tx, order, clock)
    return ItemAggregate(item=item, modifiers=mods), order


async def remove_item(uow: UnitOfWork, outlet_id: str, order_id: str, item_id: str,
                      clock: Clock | None = None) -> Order:
    clock = clock or SystemClock()
    async with uow.begin() as tx:
        order = await _lock_editable_order(tx, outlet_id, order_id)
        items = await tx.orders.list_items(order.id)
        item = next((i for i in items if i.id == item_id), None)
        if item is None:
            raise OrderItemNotFoundError()
        if len(items) == 1:
            raise LastItemError()
        await tx.orders.delete_item(item)
        order = await _recalculate(tx, order, clock)
    return order

