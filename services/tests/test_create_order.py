"""
Order creation: priced snapshot, all-or-nothing persistence, catering and
delivery specifics, outlet scoping.
"""
from decimal import Decimal

import pytest

from conftest import CASHIER, OTHER_OUTLET, OUTLET, dine_in, line
from order_engine.core.errors import (
    EmptyItemsError,
    ModifierMismatchError,
    OrderNotFoundError,
    ProductNotFoundError,
    VariantNotFoundError,
)
from order_engine.db.order_ops import create_order, get_order


async def test_create_persists_priced_aggregate(uow, db, clock):
    cmd = dine_in(
        line("nasi-goreng", 2, ("telur", 3), variant_id="ng-jumbo", notes="pedas"),
        line("es-teh", 1, ("boba", 1), discount_type="PERCENTAGE", discount_value="10"),
        table_number="12",
    )
    agg = await create_order(uow, cmd, clock)
    order = agg.order

    nasi, teh = agg.items
    assert nasi.item.unit_price == Decimal("30000.00")
    assert nasi.item.subtotal == Decimal("69000.00")
    assert nasi.item.station == "KITCHEN"
    assert nasi.item.notes == "pedas"
    assert nasi.item.status == "PENDING"
    assert [(m.modifier_id, m.quantity, m.unit_price) for m in nasi.modifiers] == [
        ("telur", 3, Decimal("3000.00"))
    ]
    assert teh.item.discount_amount == Decimal("1300.00")
    assert teh.item.subtotal == Decimal("11700.00")

    assert order.subtotal == Decimal("80700.00")
    assert order.total_amount == Decimal("80700.00")
    assert order.status == "NEW"
    assert order.table_number == "12"
    assert order.created_by == CASHIER
    assert order.created_at == clock.now()
    assert order.completed_at is None

    assert len(db.orders()) == 1
    assert len(db.items()) == 2
    assert len(db.tables["modifiers"]) == 2


async def test_order_level_discount_and_clamp(uow, clock):
    agg = await create_order(
        uow, dine_in(line("nasi-goreng", 1), discount_type="FIXED_AMOUNT", discount_value="999999"), clock
    )
    assert agg.order.subtotal == Decimal("25000.00")
    assert agg.order.discount_amount == Decimal("999999.00")
    assert agg.order.total_amount == Decimal("0.00")


async def test_prices_are_snapshots(uow, catalog, clock):
    agg = await create_order(uow, dine_in(line("nasi-goreng", 1)), clock)
    catalog.add_product("nasi-goreng", "99000", station="KITCHEN")

    again = await get_order(uow, OUTLET, agg.order.id)
    assert again.items[0].item.unit_price == Decimal("25000.00")
    assert again.order.total_amount == Decimal("25000.00")


@pytest.mark.parametrize("bad_line, error", [
    (line("ghost"), ProductNotFoundError),
    (line("rendang"), ProductNotFoundError),
    (line("nasi-goreng", 1, variant_id="nope"), VariantNotFoundError),
    (line("nasi-goreng", 1, ("boba", 1)), ModifierMismatchError),
])
async def test_reference_errors_leave_nothing_behind(uow, db, clock, bad_line, error):
    with pytest.raises(error) as exc:
        await create_order(uow, dine_in(line("es-teh"), bad_line), clock)
    assert exc.value.item_index == 1
    assert db.orders() == []
    assert db.items() == []


async def test_failure_after_inserts_rolls_back_everything(uow, db, clock):
    db.faults["insert_item_modifier"] = RuntimeError("disk full")
    with pytest.raises(RuntimeError):
        await create_order(uow, dine_in(line("nasi-goreng", 1, ("telur", 1))), clock)
    assert db.orders() == []
    assert db.items() == []
    assert db.tables["modifiers"] == {}


async def test_validation_happens_before_any_transaction(uow, db, clock):
    with pytest.raises(EmptyItemsError):
        await create_order(uow, dine_in(items=()), clock)
    assert db.commits == 0
    assert db.rollbacks == 0


async def test_catering_order_starts_booked(uow, clock):
    agg = await create_order(uow, dine_in(
        line("nasi-goreng", 40),
        order_type="CATERING",
        customer_id="cust-9",
        catering_date="2026-03-20T11:00:00+07:00",
        catering_dp_amount="300000",
    ), clock)
    order = agg.order
    assert order.order_type == "CATERING"
    assert order.catering_status == "BOOKED"
    assert order.catering_dp_amount == Decimal("300000.00")
    assert order.catering_date.utcoffset().total_seconds() == 7 * 3600


async def test_delivery_fields_only_stored_for_delivery(uow, clock):
    delivery = await create_order(uow, dine_in(
        order_type="DELIVERY", delivery_platform="GrabFood", delivery_address="Jl. Merdeka 1"
    ), clock)
    takeaway = await create_order(uow, dine_in(
        order_type="TAKEAWAY", delivery_platform="GrabFood", delivery_address="Jl. Merdeka 1"
    ), clock)
    assert delivery.order.delivery_platform == "GrabFood"
    assert takeaway.order.delivery_platform is None
    assert takeaway.order.delivery_address is None
    assert takeaway.order.catering_status is None


async def test_get_order_is_outlet_scoped(uow, clock):
    agg = await create_order(uow, dine_in(), clock)
    found = await get_order(uow, OUTLET, agg.order.id)
    assert found.order.order_number == "KWR-001"
    assert len(found.items) == 1

    with pytest.raises(OrderNotFoundError):
        await get_order(uow, OTHER_OUTLET, agg.order.id)
    with pytest.raises(OrderNotFoundError):
        await get_order(uow, OUTLET, "missing")
