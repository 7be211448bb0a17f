"""
Order Engine — Command objects

Plain inputs to the transactional operations. Monetary fields and dates
arrive as the caller sent them (usually strings) and are parsed by the
engine so a bad value surfaces as a typed validation error.
"""
from dataclasses import dataclass, field
from decimal import Decimal

MoneyInput = str | int | Decimal


@dataclass(frozen=True)
class ModifierLine:
    modifier_id: str
    quantity: int = 1


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int
    variant_id: str | None = None
    modifiers: tuple[ModifierLine, ...] = ()
    discount_type: str | None = None
    discount_value: MoneyInput | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CreateOrder:
    outlet_id: str
    created_by: str
    order_type: str
    items: tuple[OrderLine, ...] = field(default_factory=tuple)
    customer_id: str | None = None
    table_number: str | None = None
    notes: str | None = None
    discount_type: str | None = None
    discount_value: MoneyInput | None = None
    catering_date: str | None = None
    catering_dp_amount: MoneyInput | None = None
    delivery_platform: str | None = None
    delivery_address: str | None = None


@dataclass(frozen=True)
class AddPayment:
    outlet_id: str
    order_id: str
    payment_method: str
    amount: MoneyInput
    processed_by: str
    amount_received: MoneyInput | None = None
    reference_number: str | None = None


@dataclass(frozen=True)
class UpdateItem:
    outlet_id: str
    order_id: str
    item_id: str
    quantity: int
    notes: str | None = None
