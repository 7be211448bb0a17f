"""
Order Engine — Order DB models

[TRANSACTIONAL DATA] orders, order_items, order_item_modifiers.
Prices on items and modifiers are snapshots taken at creation time and are
never re-read from the catalog.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from order_engine.db.database import Base

ORDER_NUMBER_CONSTRAINT = "uq_orders_outlet_day_number"


class OrderType(str, PyEnum):
    DINE_IN = "DINE_IN"
    TAKEAWAY = "TAKEAWAY"
    DELIVERY = "DELIVERY"
    CATERING = "CATERING"


class OrderStatus(str, PyEnum):
    NEW = "NEW"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CLOSED_STATUSES = frozenset({OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value})


class OrderItemStatus(str, PyEnum):
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"


class CateringStatus(str, PyEnum):
    BOOKED = "BOOKED"
    DP_PAID = "DP_PAID"
    SETTLED = "SETTLED"
    CANCELLED = "CANCELLED"


class DiscountType(str, PyEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


def _new_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    """
    [TRANSACTIONAL DATA] — outlet-scoped aggregate root.
    total_amount = max(0, subtotal - discount_amount) + tax_amount
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("outlet_id", "business_date", "order_number", name=ORDER_NUMBER_CONSTRAINT),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    outlet_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    order_number: Mapped[str] = mapped_column(String(20), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    daily_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    order_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False, default=OrderStatus.NEW.value)
    table_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    discount_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    catering_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    catering_status: Mapped[str | None] = mapped_column(String(20), index=True, nullable=True)
    catering_dp_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    delivery_platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class OrderItem(Base):
    """
    [TRANSACTIONAL DATA]
    subtotal = max(0, unit_price * quantity + modifiers_total - discount_amount)
    """
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    variant_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    discount_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    station: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(20), index=True, nullable=False, default=OrderItemStatus.PENDING.value)


class OrderItemModifier(Base):
    """[TRANSACTIONAL DATA]"""
    __tablename__ = "order_item_modifiers"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_item_modifiers_quantity_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id", ondelete="CASCADE"), index=True, nullable=False
    )
    modifier_id: Mapped[str] = mapped_column(String(36), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
