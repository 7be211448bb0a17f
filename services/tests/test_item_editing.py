"""
Editing items on a NEW order and recalculating totals.
"""
from decimal import Decimal

import pytest

from conftest import CASHIER, OUTLET, dine_in, line
from order_engine.core.commands import AddPayment, UpdateItem
from order_engine.core.errors import (
    InvalidQuantityError,
    LastItemError,
    OrderClosedError,
    OrderItemNotFoundError,
    OrderNotEditableError,
    ProductNotFoundError,
    TotalBelowPaidError,
)
from order_engine.db.order_ops import (
    add_item,
    create_order,
    get_order,
    recalculate_totals,
    remove_item,
    update_item,
)
from order_engine.db.payment_ops import add_payment
from order_engine.db.status_ops import cancel_order, transition_status


@pytest.fixture
async def agg(uow, clock):
    # (25000 + 3000 - 1000) + 8000 = 35000, then 10% off the order
    return await create_order(uow, dine_in(
        line("nasi-goreng", 1, ("telur", 1), discount_type="FIXED_AMOUNT", discount_value="1000"),
        line("es-teh", 1),
        discount_type="PERCENTAGE",
        discount_value="10",
    ), clock)


async def test_add_item_recalculates_totals(uow, db, agg, clock):
    item, order = await add_item(uow, OUTLET, agg.order.id, line("es-teh", 2, variant_id="teh-large"), clock)

    assert item.item.unit_price == Decimal("10000.00")
    assert item.item.subtotal == Decimal("20000.00")
    assert order.subtotal == Decimal("55000.00")
    assert order.discount_amount == Decimal("5500.00")
    assert order.total_amount == Decimal("49500.00")
    assert db.order(agg.order.id)["total_amount"] == Decimal("49500.00")
    assert len(db.items()) == 3


async def test_add_item_with_bad_reference_changes_nothing(uow, db, agg, clock):
    before = dict(db.order(agg.order.id))
    with pytest.raises(ProductNotFoundError):
        await add_item(uow, OUTLET, agg.order.id, line("ghost"), clock)
    assert db.order(agg.order.id) == before
    assert len(db.items()) == 2


async def test_update_item_quantity_reuses_snapshot_prices(uow, catalog, agg, clock):
    nasi = agg.items[0]
    catalog.add_product("nasi-goreng", "99999", station="KITCHEN")

    updated, order = await update_item(
        uow, UpdateItem(OUTLET, agg.order.id, nasi.item.id, quantity=3, notes="no onion"), clock
    )

    # 25000 x 3 + 3000 modifier - 1000 fixed discount
    assert updated.item.quantity == 3
    assert updated.item.subtotal == Decimal("77000.00")
    assert updated.item.notes == "no onion"
    assert order.subtotal == Decimal("85000.00")
    assert order.total_amount == Decimal("76500.00")


async def test_update_item_rejects_bad_quantity_and_unknown_item(uow, agg, clock):
    with pytest.raises(InvalidQuantityError):
        await update_item(uow, UpdateItem(OUTLET, agg.order.id, agg.items[0].item.id, 0), clock)
    with pytest.raises(OrderItemNotFoundError):
        await update_item(uow, UpdateItem(OUTLET, agg.order.id, "missing", 1), clock)


async def test_remove_item_and_last_item_guard(uow, db, agg, clock):
    teh = agg.items[1]
    order = await remove_item(uow, OUTLET, agg.order.id, teh.item.id, clock)
    assert order.subtotal == Decimal("27000.00")
    assert order.total_amount == Decimal("24300.00")
    assert len(db.items()) == 1

    with pytest.raises(LastItemError):
        await remove_item(uow, OUTLET, agg.order.id, agg.items[0].item.id, clock)
    assert len(db.items()) == 1
    assert len(db.tables["modifiers"]) == 1


async def test_items_are_frozen_once_the_kitchen_starts(uow, agg, clock):
    await transition_status(uow, OUTLET, agg.order.id, "NEW", "PREPARING", clock)
    with pytest.raises(OrderNotEditableError):
        await add_item(uow, OUTLET, agg.order.id, line("es-teh"), clock)
    with pytest.raises(OrderNotEditableError):
        await remove_item(uow, OUTLET, agg.order.id, agg.items[1].item.id, clock)


async def test_recalculate_totals_is_idempotent(uow, db, agg, clock):
    before = dict(db.order(agg.order.id))
    order = await recalculate_totals(uow, OUTLET, agg.order.id, clock)
    assert order.subtotal == before["subtotal"] == Decimal("35000.00")
    assert order.discount_amount == Decimal("3500.00")
    assert order.total_amount == before["total_amount"] == Decimal("31500.00")


async def test_recalculate_follows_item_rows(uow, db, agg, clock):
    db.tables["items"][agg.items[1].item.id]["subtotal"] = Decimal("0.00")
    order = await recalculate_totals(uow, OUTLET, agg.order.id, clock)
    assert order.subtotal == Decimal("27000.00")
    assert order.total_amount == Decimal("24300.00")

    refreshed = await get_order(uow, OUTLET, agg.order.id)
    assert refreshed.order.total_amount == Decimal("24300.00")


async def test_recalculate_rejects_closed_orders(uow, agg, clock):
    await cancel_order(uow, OUTLET, agg.order.id, clock)
    with pytest.raises(OrderClosedError):
        await recalculate_totals(uow, OUTLET, agg.order.id, clock)


# ─── Edits against money already taken ─────────────────────────────────────────
def qris(order_id, amount) -> AddPayment:
    return AddPayment(OUTLET, order_id, "QRIS", amount, CASHIER)


@pytest.fixture
async def part_paid(uow, clock):
    # 25000 + 8000 = 33000, 30000 of it already paid
    agg = await create_order(uow, dine_in(line("nasi-goreng"), line("es-teh")), clock)
    await add_payment(uow, qris(agg.order.id, "30000"), clock)
    return agg


async def test_removing_an_item_cannot_drop_total_below_paid(uow, db, part_paid, clock):
    nasi = part_paid.items[0]
    before = dict(db.order(part_paid.order.id))

    with pytest.raises(TotalBelowPaidError) as exc:
        await remove_item(uow, OUTLET, part_paid.order.id, nasi.item.id, clock)

    assert exc.value.status_code == 409
    assert db.order(part_paid.order.id) == before
    assert len(db.items()) == 2
    assert sum(p["amount"] for p in db.payments(part_paid.order.id)) <= before["total_amount"]


async def test_lowering_quantity_cannot_drop_total_below_paid(uow, db, clock):
    agg = await create_order(uow, dine_in(line("nasi-goreng", 2)), clock)
    await add_payment(uow, qris(agg.order.id, "40000"), clock)

    with pytest.raises(TotalBelowPaidError):
        await update_item(uow, UpdateItem(OUTLET, agg.order.id, agg.items[0].item.id, 1), clock)
    assert db.order(agg.order.id)["total_amount"] == Decimal("50000.00")
    assert db.items()[0]["quantity"] == 2


async def test_edit_down_to_exactly_paid_completes_the_order(uow, db, clock):
    agg = await create_order(uow, dine_in(line("nasi-goreng"), line("es-teh")), clock)
    await add_payment(uow, qris(agg.order.id, "25000"), clock)

    order = await remove_item(uow, OUTLET, agg.order.id, agg.items[1].item.id, clock)

    assert order.total_amount == Decimal("25000.00")
    assert order.status == "COMPLETED"
    assert order.completed_at is not None
    assert db.order(agg.order.id)["status"] == "COMPLETED"


async def test_catering_edit_down_to_deposit_settles(uow, db, clock):
    agg = await create_order(uow, dine_in(
        line("nasi-goreng"),
        line("es-teh"),
        order_type="CATERING",
        customer_id="cust-7",
        catering_date="2026-03-15T04:00:00Z",
    ), clock)
    await add_payment(uow, qris(agg.order.id, "25000"), clock)
    assert db.order(agg.order.id)["catering_status"] == "DP_PAID"

    order = await remove_item(uow, OUTLET, agg.order.id, agg.items[1].item.id, clock)
    assert order.catering_status == "SETTLED"
    assert order.status == "COMPLETED"


async def test_unpaid_order_can_still_be_edited_freely(uow, db, clock):
    agg = await create_order(uow, dine_in(line("nasi-goreng"), line("es-teh")), clock)
    order = await remove_item(uow, OUTLET, agg.order.id, agg.items[0].item.id, clock)
    assert order.total_amount == Decimal("8000.00")
    assert order.status == "NEW"
