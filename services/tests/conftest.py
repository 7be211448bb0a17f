"""
Shared fixtures: an in-memory store that behaves like the PostgreSQL one
where it matters for these tests.

  - Writes are buffered per transaction and applied on commit; an exception
    inside `begin()` discards them.
  - lock_order and every conditional update take a per-order asyncio.Lock
    held until the transaction ends (row lock semantics).
  - next_order_sequence yields to the event loop after reading the max, and
    the order-number unique constraint is checked on insert and on commit,
    so concurrent creations really do collide and retry.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from jose import jwt

from order_engine.core.clock import FixedClock
from order_engine.core.commands import CreateOrder, ModifierLine, OrderLine
from order_engine.core.config import get_settings
from order_engine.core.errors import LockTimeoutError
from order_engine.core.pricing import ModifierSnapshot, ProductSnapshot, VariantSnapshot
from order_engine.db.order_numbers import OrderNumberCollision
from order_engine.models.order import Order, OrderItem, OrderItemModifier, OrderStatus
from order_engine.models.payment import Payment, PaymentStatus

OUTLET = "outlet-1"
OTHER_OUTLET = "outlet-2"
CASHIER = "cashier-1"

MODELS = {"orders": Order, "items": OrderItem, "modifiers": OrderItemModifier, "payments": Payment}


def row_of(obj) -> dict:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


# ─── Catalog ───────────────────────────────────────────────────────────────────
class FakeCatalog:
    def __init__(self):
        self.products: dict[str, ProductSnapshot] = {}
        self.variants: dict[str, VariantSnapshot] = {}
        self.modifiers: dict[str, ModifierSnapshot] = {}

    def add_product(self, id, price, outlet_id=OUTLET, station=None):
        self.products[id] = ProductSnapshot(id, outlet_id, Decimal(price), station)

    def add_variant(self, id, product_id, adjustment):
        self.variants[id] = VariantSnapshot(id, product_id, Decimal(adjustment))

    def add_modifier(self, id, product_id, price):
        self.modifiers[id] = ModifierSnapshot(id, product_id, Decimal(price))

    async def get_product(self, outlet_id, product_id):
        product = self.products.get(product_id)
        if product is None or product.outlet_id != outlet_id:
            return None
        return product

    async def get_variant(self, variant_id):
        return self.variants.get(variant_id)

    async def get_modifier(self, modifier_id):
        return self.modifiers.get(modifier_id)


# ─── Database ──────────────────────────────────────────────────────────────────
class FakeDatabase:
    def __init__(self, catalog: FakeCatalog):
        self.catalog = catalog
        self.tables: dict[str, dict[str, dict]] = {name: {} for name in MODELS}
        self.locks: dict[str, asyncio.Lock] = {}
        self.lock_timeout: float | None = None
        self.faults: dict[str, Exception] = {}
        self.commits = 0
        self.rollbacks = 0

    def lock_for(self, key: str) -> asyncio.Lock:
        return self.locks.setdefault(key, asyncio.Lock())

    def number_taken(self, row: dict) -> bool:
        return any(
            o["outlet_id"] == row["outlet_id"]
            and o["business_date"] == row["business_date"]
            and o["order_number"] == row["order_number"]
            and o["id"] != row["id"]
            for o in self.tables["orders"].values()
        )

    # Committed-state helpers for assertions
    def orders(self) -> list[dict]:
        return list(self.tables["orders"].values())

    def items(self) -> list[dict]:
        return list(self.tables["items"].values())

    def payments(self, order_id: str | None = None) -> list[dict]:
        rows = self.tables["payments"].values()
        return [p for p in rows if order_id is None or p["order_id"] == order_id]

    def order(self, order_id: str) -> dict:
        return self.tables["orders"][order_id]


class FakeTransaction:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.pending: dict[str, dict[str, dict | None]] = {name: {} for name in MODELS}
        self.held: list[asyncio.Lock] = []
        self.catalog = db.catalog
        self.orders = FakeOrderStore(self)
        self.payments = FakePaymentStore(self)

    def read(self, table: str, id: str) -> dict | None:
        if id in self.pending[table]:
            return self.pending[table][id]
        return self.db.tables[table].get(id)

    def rows(self, table: str) -> list[dict]:
        merged = dict(self.db.tables[table])
        merged.update(self.pending[table])
        return [r for r in merged.values() if r is not None]

    def write(self, table: str, row: dict) -> None:
        self.pending[table][row["id"]] = dict(row)

    def delete(self, table: str, id: str) -> None:
        self.pending[table][id] = None

    def fault(self, name: str) -> None:
        exc = self.db.faults.pop(name, None)
        if exc is not None:
            raise exc

    async def acquire(self, key: str) -> None:
        lock = self.db.lock_for(key)
        if lock in self.held:
            return
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.db.lock_timeout)
        except asyncio.TimeoutError:
            raise LockTimeoutError()
        self.held.append(lock)

    def commit(self) -> None:
        for row in self.pending["orders"].values():
            if row is not None and self.db.number_taken(row):
                raise OrderNumberCollision(row["order_number"])
        for table, changes in self.pending.items():
            for id, row in changes.items():
                if row is None:
                    self.db.tables[table].pop(id, None)
                else:
                    self.db.tables[table][id] = row
        self.db.commits += 1

    def release(self) -> None:
        while self.held:
            self.held.pop().release()


class FakeOrderStore:
    def __init__(self, tx: FakeTransaction):
        self.tx = tx

    def _order(self, outlet_id, order_id):
        row = self.tx.read("orders", order_id)
        if row is None or row["outlet_id"] != outlet_id:
            return None
        return Order(**row)

    async def next_order_sequence(self, outlet_id, business_date):
        sequences = [
            o["daily_sequence"] for o in self.tx.rows("orders")
            if o["outlet_id"] == outlet_id and o["business_date"] == business_date
        ]
        # Let concurrent creations read the same max before anyone inserts.
        await asyncio.sleep(0)
        return max(sequences, default=0) + 1

    async def insert_order(self, order):
        row = row_of(order)
        if self.tx.db.number_taken(row):
            raise OrderNumberCollision(row["order_number"])
        self.tx.write("orders", row)
        return order

    async def insert_item(self, item):
        self.tx.fault("insert_item")
        self.tx.write("items", row_of(item))
        return item

    async def insert_item_modifier(self, modifier):
        self.tx.fault("insert_item_modifier")
        self.tx.write("modifiers", row_of(modifier))
        return modifier

    async def get_order(self, outlet_id, order_id):
        return self._order(outlet_id, order_id)

    async def list_orders(self, outlet_id, status, order_type, start_date, end_date, limit, offset):
        rows = [
            r for r in self.tx.rows("orders")
            if r["outlet_id"] == outlet_id
            and (not status or r["status"] == status)
            and (not order_type or r["order_type"] == order_type)
            and (not start_date or r["business_date"] >= start_date)
            and (not end_date or r["business_date"] <= end_date)
        ]
        rows.sort(key=lambda r: (r["created_at"], r["id"]), reverse=True)
        return [Order(**r) for r in rows[offset:offset + limit]]

    async def lock_order(self, outlet_id, order_id):
        await self.tx.acquire(order_id)
        return self._order(outlet_id, order_id)

    async def list_items(self, order_id):
        rows = [r for r in self.tx.rows("items") if r["order_id"] == order_id]
        return [OrderItem(**r) for r in sorted(rows, key=lambda r: r["id"])]

    async def list_item_modifiers(self, item_id):
        rows = [r for r in self.tx.rows("modifiers") if r["order_item_id"] == item_id]
        return [OrderItemModifier(**r) for r in sorted(rows, key=lambda r: r["id"])]

    async def get_item(self, order_id, item_id):
        row = self.tx.read("items", item_id)
        if row is None or row["order_id"] != order_id:
            return None
        return OrderItem(**row)

    async def save_item(self, item):
        self.tx.write("items", row_of(item))
        return item

    async def delete_item(self, item):
        for mod in await self.list_item_modifiers(item.id):
            self.tx.delete("modifiers", mod.id)
        self.tx.delete("items", item.id)

    async def compare_and_set_status(self, outlet_id, order_id, expected, new, now):
        await self.tx.acquire(order_id)
        row = self.tx.read("orders", order_id)
        if row is None or row["outlet_id"] != outlet_id or row["status"] != expected:
            return None
        row = {**row, "status": new, "updated_at": now}
        if new == OrderStatus.COMPLETED.value:
            row["completed_at"] = now
        self.tx.write("orders", row)
        return Order(**row)

    async def cancel_open_order(self, outlet_id, order_id, now):
        await self.tx.acquire(order_id)
        row = self.tx.read("orders", order_id)
        closed = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)
        if row is None or row["outlet_id"] != outlet_id or row["status"] in closed:
            return None
        row = {**row, "status": OrderStatus.CANCELLED.value, "updated_at": now}
        self.tx.write("orders", row)
        return Order(**row)

    async def compare_and_set_item_status(self, order_id, item_id, expected, new):
        await self.tx.acquire(f"item:{item_id}")
        row = self.tx.read("items", item_id)
        if row is None or row["order_id"] != order_id or row["status"] != expected:
            return None
        row = {**row, "status": new}
        self.tx.write("items", row)
        return OrderItem(**row)

    async def set_catering_status(self, order_id, status, now):
        await self.tx.acquire(order_id)
        row = {**self.tx.read("orders", order_id), "catering_status": status, "updated_at": now}
        self.tx.write("orders", row)
        return Order(**row)

    async def update_totals(self, order, subtotal, discount_amount, total, now):
        await self.tx.acquire(order.id)
        order.subtotal = subtotal
        order.discount_amount = discount_amount
        order.total_amount = total
        order.updated_at = now
        self.tx.write("orders", row_of(order))
        return order


class FakePaymentStore:
    def __init__(self, tx: FakeTransaction):
        self.tx = tx

    async def sum_completed_payments(self, order_id):
        return sum(
            (p["amount"] for p in self.tx.rows("payments")
             if p["order_id"] == order_id and p["status"] == PaymentStatus.COMPLETED.value),
            Decimal("0.00"),
        )

    async def insert_payment(self, payment):
        self.tx.fault("insert_payment")
        self.tx.write("payments", row_of(payment))
        return payment

    async def list_payments(self, order_id):
        rows = [p for p in self.tx.rows("payments") if p["order_id"] == order_id]
        return [Payment(**p) for p in sorted(rows, key=lambda p: (p["processed_at"], p["id"]))]


class FakeUnitOfWork:
    def __init__(self, db: FakeDatabase):
        self.db = db

    @asynccontextmanager
    async def begin(self):
        tx = FakeTransaction(self.db)
        try:
            yield tx
            tx.commit()
        except BaseException:
            self.db.rollbacks += 1
            raise
        finally:
            tx.release()


# ─── Fixtures ──────────────────────────────────────────────────────────────────
@pytest.fixture
def catalog() -> FakeCatalog:
    c = FakeCatalog()
    c.add_product("nasi-goreng", "25000", station="KITCHEN")
    c.add_variant("ng-jumbo", "nasi-goreng", "5000")
    c.add_modifier("telur", "nasi-goreng", "3000")
    c.add_product("es-teh", "8000", station="BAR")
    c.add_variant("teh-large", "es-teh", "2000")
    c.add_modifier("boba", "es-teh", "5000")
    c.add_product("rendang", "45000", outlet_id=OTHER_OUTLET)
    return c


@pytest.fixture
def db(catalog) -> FakeDatabase:
    return FakeDatabase(catalog)


@pytest.fixture
def uow(db) -> FakeUnitOfWork:
    return FakeUnitOfWork(db)


@pytest.fixture
def clock() -> FixedClock:
    # 09:30 in Jakarta
    return FixedClock(datetime(2026, 3, 2, 2, 30, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    """Keep allocator backoff out of test wall time."""
    settings = get_settings()
    monkeypatch.setattr(settings, "ORDER_NUMBER_RETRY_BASE_DELAY_MS", 0)
    monkeypatch.setattr(settings, "ORDER_NUMBER_RETRY_JITTER_MS", 1)


def dine_in(*lines: OrderLine, **kwargs) -> CreateOrder:
    fields = dict(outlet_id=OUTLET, created_by=CASHIER, order_type="DINE_IN",
                  items=tuple(lines) or (OrderLine("nasi-goreng", 2),))
    fields.update(kwargs)
    return CreateOrder(**fields)


def line(product_id="nasi-goreng", quantity=1, *modifiers, **kwargs) -> OrderLine:
    return OrderLine(
        product_id,
        quantity,
        modifiers=tuple(ModifierLine(m, q) for m, q in modifiers),
        **kwargs,
    )


def make_token(sub: str | None = CASHIER, expires_in: timedelta = timedelta(hours=1), secret=None,
               outlet_id: str = OUTLET, role: str = "CASHIER") -> str:
    settings = get_settings()
    claims = {"exp": datetime.now(timezone.utc) + expires_in, "outlet_id": outlet_id, "role": role}
    if sub is not None:
        claims["sub"] = sub
    return jwt.encode(claims, secret or settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


ORDER_BODY = {
    "order_type": "DINE_IN",
    "table_number": "7",
    "items": [
        {"product_id": "nasi-goreng", "quantity": 2, "modifiers": [{"modifier_id": "telur", "quantity": 3}]},
    ],
}
