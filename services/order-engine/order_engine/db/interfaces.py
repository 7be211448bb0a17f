"""
Order Engine — Store capabilities

The transactional operations only talk to these narrow protocols. The
SQLAlchemy implementation lives in sql_store.py; tests supply in-memory
fakes.
"""
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol

from order_engine.core.pricing import ModifierSnapshot, ProductSnapshot, VariantSnapshot
from order_engine.models.order import Order, OrderItem, OrderItemModifier
from order_engine.models.payment import Payment


@dataclass
class ItemAggregate:
    item: OrderItem
    modifiers: list[OrderItemModifier] = field(default_factory=list)


@dataclass
class OrderAggregate:
    order: Order
    items: list[ItemAggregate] = field(default_factory=list)


@dataclass
class OrderPage:
    orders: list[Order]
    limit: int
    offset: int


class CatalogLookup(Protocol):
    async def get_product(self, outlet_id: str, product_id: str) -> ProductSnapshot | None: ...

    async def get_variant(self, variant_id: str) -> VariantSnapshot | None: ...

    async def get_modifier(self, modifier_id: str) -> ModifierSnapshot | None: ...


class OrderStore(Protocol):
    async def next_order_sequence(self, outlet_id: str, business_date: date) -> int: ...

    async def insert_order(self, order: Order) -> Order: ...

    async def insert_item(self, item: OrderItem) -> OrderItem: ...

    async def insert_item_modifier(self, modifier: OrderItemModifier) -> OrderItemModifier: ...

    async def get_order(self, outlet_id: str, order_id: str) -> Order | None: ...

    async def list_orders(self, outlet_id: str, status: str | None, order_type: str | None,
                          start_date: date | None, end_date: date | None,
                          limit: int, offset: int) -> list[Order]:
        """Newest first; dates are inclusive business dates."""
        ...

    async def lock_order(self, outlet_id: str, order_id: str) -> Order | None:
        """Read the order under a row lock held until the transaction ends."""
        ...

    async def list_items(self, order_id: str) -> list[OrderItem]: ...

    async def list_item_modifiers(self, item_id: str) -> list[OrderItemModifier]: ...

    async def get_item(self, order_id: str, item_id: str) -> OrderItem | None: ...

    async def save_item(self, item: OrderItem) -> OrderItem: ...

    async def delete_item(self, item: OrderItem) -> None: ...

    async def compare_and_set_status(self, outlet_id: str, order_id: str, expected: str,
                                     new: str, now: datetime) -> Order | None:
        """
        UPDATE ... WHERE status = expected. Returns the updated order, or
        None when zero rows matched.
        """
        ...

    async def cancel_open_order(self, outlet_id: str, order_id: str, now: datetime) -> Order | None:
        """Cancel unless COMPLETED/CANCELLED; None when zero rows matched."""
        ...

    async def compare_and_set_item_status(self, order_id: str, item_id: str, expected: str,
                                          new: str) -> OrderItem | None: ...

    async def set_catering_status(self, order_id: str, status: str, now: datetime) -> Order: ...

    async def update_totals(self, order: Order, subtotal: Decimal, discount_amount: Decimal,
                            total: Decimal, now: datetime) -> Order: ...


class PaymentStore(Protocol):
    async def sum_completed_payments(self, order_id: str) -> Decimal: ...

    async def insert_payment(self, payment: Payment) -> Payment: ...

    async def list_payments(self, order_id: str) -> list[Payment]: ...


class Transaction(Protocol):
    catalog: CatalogLookup
    orders: OrderStore
    payments: PaymentStore


class UnitOfWork(Protocol):
    def begin(self) -> AbstractAsyncContextManager[Transaction]:
        """
        Open a transaction. Leaving the block normally commits; any
        exception (cancellation included) rolls back.
        """
        ...
