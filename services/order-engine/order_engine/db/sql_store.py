"""
Order Engine — SQLAlchemy store

PostgreSQL implementation of the capabilities in interfaces.py. Driver
errors are translated here so the operations above only ever see the
engine's own error types:

  unique violation on uq_orders_outlet_day_number → OrderNumberCollision (retried)
  lock_not_available (55P03)                      → LockTimeoutError
  numeric_value_out_of_range (22003)              → InvalidAmountError
  connection failures                             → StoreUnavailableError
"""
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncIterator

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_engine.core.config import get_settings
from order_engine.core.errors import InvalidAmountError, LockTimeoutError, StoreUnavailableError
from order_engine.core.money import to_money
from order_engine.core.pricing import ModifierSnapshot, ProductSnapshot, VariantSnapshot
from order_engine.db.order_numbers import OrderNumberCollision
from order_engine.models.catalog import Modifier, ModifierGroup, Product, Variant, VariantGroup
from order_engine.models.order import (
    ORDER_NUMBER_CONSTRAINT,
    Order,
    OrderItem,
    OrderItemModifier,
    OrderStatus,
)
from order_engine.models.payment import Payment, PaymentStatus

settings = get_settings()
logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
LOCK_NOT_AVAILABLE = "55P03"
NUMERIC_VALUE_OUT_OF_RANGE = "22003"


def _driver_error(exc: DBAPIError):
    """The asyncpg exception behind SQLAlchemy's adapter, when there is one."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "__cause__", None) or orig


def _sqlstate(exc: DBAPIError) -> str | None:
    for candidate in (_driver_error(exc), getattr(exc, "orig", None)):
        state = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if state:
            return state
    return None


def is_order_number_collision(exc: IntegrityError) -> bool:
    if _sqlstate(exc) != UNIQUE_VIOLATION:
        return False
    constraint = getattr(_driver_error(exc), "constraint_name", None)
    if constraint:
        return constraint == ORDER_NUMBER_CONSTRAINT
    return ORDER_NUMBER_CONSTRAINT in str(exc)


class SqlCatalog:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_product(self, outlet_id: str, product_id: str) -> ProductSnapshot | None:
        row = (await self._session.execute(
            select(Product.id, Product.outlet_id, Product.base_price, Product.station)
            .where(Product.id == product_id, Product.outlet_id == outlet_id, Product.is_active.is_(True))
        )).first()
        if row is None:
            return None
        return ProductSnapshot(row.id, row.outlet_id, to_money(row.base_price), row.station)

    async def get_variant(self, variant_id: str) -> VariantSnapshot | None:
        row = (await self._session.execute(
            select(Variant.id, Variant.price_adjustment, VariantGroup.product_id)
            .join(VariantGroup, VariantGroup.id == Variant.variant_group_id)
            .where(Variant.id == variant_id, Variant.is_active.is_(True), VariantGroup.is_active.is_(True))
        )).first()
        if row is None:
            return None
        return VariantSnapshot(row.id, row.product_id, to_money(row.price_adjustment))

    async def get_modifier(self, modifier_id: str) -> ModifierSnapshot | None:
        row = (await self._session.execute(
            select(Modifier.id, Modifier.price, ModifierGroup.product_id)
            .join(ModifierGroup, ModifierGroup.id == Modifier.modifier_group_id)
            .where(Modifier.id == modifier_id, Modifier.is_active.is_(True), ModifierGroup.is_active.is_(True))
        )).first()
        if row is None:
            return None
        return ModifierSnapshot(row.id, row.product_id, to_money(row.price))


class SqlOrderStore:
    def __init__(self, session: AsyncSession, lock_timeout_ms: int):
        self._session = session
        self._lock_timeout_ms = lock_timeout_ms

    async def next_order_sequence(self, outlet_id: str, business_date: date) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.max(Order.daily_sequence), 0) + 1)
            .where(Order.outlet_id == outlet_id, Order.business_date == business_date)
        )
        return int(result.scalar_one())

    async def _add(self, obj):
        self._session.add(obj)
        await self._session.flush()
        return obj

    async def insert_order(self, order: Order) -> Order:
        return await self._add(order)

    async def insert_item(self, item: OrderItem) -> OrderItem:
        return await self._add(item)

    async def insert_item_modifier(self, modifier: OrderItemModifier) -> OrderItemModifier:
        return await self._add(modifier)

    async def get_order(self, outlet_id: str, order_id: str) -> Order | None:
        result = await self._session.execute(
            select(Order)
            .where(Order.id == order_id, Order.outlet_id == outlet_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_orders(self, outlet_id: str, status: str | None, order_type: str | None,
                          start_date: date | None, end_date: date | None,
                          limit: int, offset: int) -> list[Order]:
        stmt = select(Order).where(Order.outlet_id == outlet_id)
        if status:
            stmt = stmt.where(Order.status == status)
        if order_type:
            stmt = stmt.where(Order.order_type == order_type)
        if start_date:
            stmt = stmt.where(Order.business_date >= start_date)
        if end_date:
            stmt = stmt.where(Order.business_date <= end_date)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        return list((await self._session.execute(stmt)).scalars())

    async def lock_order(self, outlet_id: str, order_id: str) -> Order | None:
        # SET LOCAL takes no bind parameters; the value is an int from settings.
        await self._session.execute(text(f"SET LOCAL lock_timeout = '{int(self._lock_timeout_ms)}ms'"))
        result = await self._session.execute(
            select(Order)
            .where(Order.id == order_id, Order.outlet_id == outlet_id)
            .with_for_update(key_share=True)  # FOR NO KEY UPDATE: blocks writers, not readers
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_items(self, order_id: str) -> list[OrderItem]:
        result = await self._session.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
        return list(result.scalars().all())

    async def list_item_modifiers(self, item_id: str) -> list[OrderItemModifier]:
        result = await self._session.execute(
            select(OrderItemModifier)
            .where(OrderItemModifier.order_item_id == item_id)
            .order_by(OrderItemModifier.id)
        )
        return list(result.scalars().all())

    async def get_item(self, order_id: str, item_id: str) -> OrderItem | None:
        result = await self._session.execute(
            select(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save_item(self, item: OrderItem) -> OrderItem:
        await self._session.flush()
        return item

    async def delete_item(self, item: OrderItem) -> None:
        await self._session.execute(
            delete(OrderItemModifier).where(OrderItemModifier.order_item_id == item.id)
        )
        await self._session.delete(item)
        await self._session.flush()

    async def compare_and_set_status(self, outlet_id: str, order_id: str, expected: str,
                                     new: str, now: datetime) -> Order | None:
        values = {"status": new, "updated_at": now}
        if new == OrderStatus.COMPLETED.value:
            values["completed_at"] = now
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order_id, Order.outlet_id == outlet_id, Order.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get_order(outlet_id, order_id)

    async def cancel_open_order(self, outlet_id: str, order_id: str, now: datetime) -> Order | None:
        result = await self._session.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.outlet_id == outlet_id,
                Order.status.not_in([OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value]),
            )
            .values(status=OrderStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get_order(outlet_id, order_id)

    async def compare_and_set_item_status(self, order_id: str, item_id: str, expected: str,
                                          new: str) -> OrderItem | None:
        result = await self._session.execute(
            update(OrderItem)
            .where(OrderItem.id == item_id, OrderItem.order_id == order_id, OrderItem.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.get_item(order_id, item_id)

    async def set_catering_status(self, order_id: str, status: str, now: datetime) -> Order:
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(catering_status=status, updated_at=now)
            .returning(Order.outlet_id)
        )
        outlet_id = result.scalar_one()
        return await self.get_order(outlet_id, order_id)

    async def update_totals(self, order: Order, subtotal: Decimal, discount_amount: Decimal,
                            total: Decimal, now: datetime) -> Order:
        order.subtotal = subtotal
        order.discount_amount = discount_amount
        order.total_amount = total
        order.updated_at = now
        await self._session.flush()
        return order


class SqlPaymentStore:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def sum_completed_payments(self, order_id: str) -> Decimal:
        result = await self._session.execute(
            select(func.coalesce(func.sum(Payment.amount), 0))
            .where(Payment.order_id == order_id, Payment.status == PaymentStatus.COMPLETED.value)
        )
        return to_money(result.scalar_one())

    async def insert_payment(self, payment: Payment) -> Payment:
        self._session.add(payment)
        await self._session.flush()
        return payment

    async def list_payments(self, order_id: str) -> list[Payment]:
        result = await self._session.execute(
            select(Payment).where(Payment.order_id == order_id).order_by(Payment.processed_at, Payment.id)
        )
        return list(result.scalars().all())


class SqlTransaction:
    def __init__(self, session: AsyncSession, lock_timeout_ms: int):
        self.session = session
        self.catalog = SqlCatalog(session)
        self.orders = SqlOrderStore(session, lock_timeout_ms)
        self.payments = SqlPaymentStore(session)


class SqlUnitOfWork:
    """
    One AsyncSession per transaction. `async with session.begin()` commits on
    normal exit and rolls back on any exception, task cancellation included.
    """

    def __init__(self, session_factory: async_sessionmaker, lock_timeout_ms: int | None = None):
        self._session_factory = session_factory
        self._lock_timeout_ms = lock_timeout_ms or settings.LOCK_TIMEOUT_MS

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[SqlTransaction]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield SqlTransaction(session, self._lock_timeout_ms)
        except IntegrityError as exc:
            if is_order_number_collision(exc):
                raise OrderNumberCollision(str(exc.orig)) from exc
            raise
        except (OperationalError, InterfaceError, DBAPIError) as exc:
            state = _sqlstate(exc)
            if state == LOCK_NOT_AVAILABLE:
                raise LockTimeoutError() from exc
            if state == NUMERIC_VALUE_OUT_OF_RANGE:
                raise InvalidAmountError("amount exceeds the supported range") from exc
            if isinstance(exc, (OperationalError, InterfaceError)) or exc.connection_invalidated:
                logger.warning("Database unavailable: %s", exc)
                raise StoreUnavailableError() from exc
            raise
        except OSError as exc:
            logger.warning("Database connection failed: %s", exc)
            raise StoreUnavailableError() from exc
