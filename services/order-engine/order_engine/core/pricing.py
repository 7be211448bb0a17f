"""
Order Engine — Pricing calculator

Pure functions, no I/O. Catalog data reaches this module as snapshots that
the caller has already looked up; the calculator only checks ownership and
does the arithmetic:

    unit_price     = base_price + variant_adjustment
    modifiers      = sum(modifier_price * modifier_qty)
    line_gross     = unit_price * quantity + modifiers
    item_subtotal  = max(0, line_gross - item_discount)
    order_subtotal = sum(item_subtotal)
    total          = max(0, order_subtotal - order_discount) + tax

PERCENTAGE discounts apply to the whole gross, modifiers included.
Results are clamped at zero; oversized discounts are not rejected.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from order_engine.core.clock import parse_timestamp
from order_engine.core.commands import CreateOrder, MoneyInput, OrderLine
from order_engine.core.errors import (
    CateringCustomerRequiredError,
    CateringDateRequiredError,
    EmptyItemsError,
    InvalidCateringDateError,
    InvalidCateringDpAmountError,
    InvalidDiscountTypeError,
    InvalidDiscountValueError,
    InvalidOrderTypeError,
    InvalidQuantityError,
    ModifierMismatchError,
    ModifierNotFoundError,
    ProductNotFoundError,
    ValidationError,
    VariantMismatchError,
    VariantNotFoundError,
)
from order_engine.core.money import HUNDRED, ZERO, clamp_zero, parse_money, quantize
from order_engine.models.order import DiscountType, OrderType


# ── Catalog snapshots ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    outlet_id: str
    base_price: Decimal
    station: str | None = None


@dataclass(frozen=True)
class VariantSnapshot:
    id: str
    product_id: str
    price_adjustment: Decimal


@dataclass(frozen=True)
class ModifierSnapshot:
    id: str
    product_id: str
    price: Decimal


# ── Discounts ─────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Discount:
    type: DiscountType
    value: Decimal

    def amount_for(self, base: Decimal) -> Decimal:
        if self.type is DiscountType.PERCENTAGE:
            return quantize(base * self.value / HUNDRED)
        return self.value


def parse_discount(discount_type: str | None, discount_value: MoneyInput | None) -> Discount | None:
    """No type means no discount; a type with a missing or bad value is rejected."""
    if not discount_type:
        return None
    try:
        dtype = DiscountType(discount_type)
    except ValueError:
        raise InvalidDiscountTypeError(f"invalid discount_type {discount_type!r}")
    if discount_value is None:
        raise InvalidDiscountValueError("discount_value is required with discount_type")
    try:
        value = parse_money(discount_value)
    except ValueError:
        raise InvalidDiscountValueError(f"invalid discount_value {discount_value!r}")
    if value < ZERO:
        raise InvalidDiscountValueError("discount_value must not be negative")
    return Discount(dtype, value)


def discount_from_row(discount_type: str | None, discount_value: Decimal | None) -> Discount | None:
    """Rebuild a Discount from stored columns (already validated on write)."""
    if not discount_type:
        return None
    return Discount(DiscountType(discount_type), quantize(discount_value or ZERO))


# ── Line and order arithmetic ─────────────────────────────────────────────────
@dataclass(frozen=True)
class LineAmounts:
    gross: Decimal
    discount_amount: Decimal
    subtotal: Decimal


def line_amounts(unit_price: Decimal, quantity: int, modifiers_total: Decimal,
                 discount: Discount | None) -> LineAmounts:
    gross = quantize(unit_price * quantity + modifiers_total)
    discount_amount = discount.amount_for(gross) if discount else ZERO
    return LineAmounts(gross, discount_amount, clamp_zero(gross - discount_amount))


def modifiers_total(priced: Iterable[tuple[Decimal, int]]) -> Decimal:
    return quantize(sum((price * qty for price, qty in priced), ZERO))


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal


def order_totals(item_subtotals: Iterable[Decimal], discount: Discount | None,
                 tax_amount: Decimal = ZERO) -> OrderTotals:
    subtotal = quantize(sum(item_subtotals, ZERO))
    discount_amount = discount.amount_for(subtotal) if discount else ZERO
    total = clamp_zero(subtotal - discount_amount) + tax_amount
    return OrderTotals(subtotal, discount_amount, tax_amount, total)


@dataclass(frozen=True)
class PricedModifier:
    modifier_id: str
    quantity: int
    unit_price: Decimal


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    variant_id: str | None
    quantity: int
    unit_price: Decimal
    modifiers: tuple[PricedModifier, ...]
    discount: Discount | None
    discount_amount: Decimal
    subtotal: Decimal
    station: str | None
    notes: str | None


def price_line(
    index: int,
    line: OrderLine,
    discount: Discount | None,
    product: ProductSnapshot | None,
    variant: VariantSnapshot | None,
    modifiers: Sequence[ModifierSnapshot | None],
) -> PricedLine:
    """
    Price one requested line from its catalog snapshots.

    `modifiers` is positionally aligned with `line.modifiers`; a None entry
    means the lookup found nothing.
    """
    if line.quantity <= 0:
        raise InvalidQuantityError(f"items[{index}]: quantity must be > 0")
    if product is None:
        raise ProductNotFoundError(item_index=index)

    unit_price = product.base_price
    if line.variant_id:
        if variant is None:
            raise VariantNotFoundError(item_index=index)
        if variant.product_id != product.id:
            raise VariantMismatchError(item_index=index)
        unit_price = unit_price + variant.price_adjustment
    unit_price = quantize(unit_price)

    priced_mods = []
    for j, (requested, snapshot) in enumerate(zip(line.modifiers, modifiers, strict=True)):
        if requested.quantity <= 0:
            raise InvalidQuantityError(f"items[{index}].modifiers[{j}]: quantity must be > 0")
        if snapshot is None:
            raise ModifierNotFoundError(item_index=index, modifier_index=j)
        if snapshot.product_id != product.id:
            raise ModifierMismatchError(item_index=index, modifier_index=j)
        priced_mods.append(PricedModifier(snapshot.id, requested.quantity, quantize(snapshot.price)))

    mods_total = modifiers_total((m.unit_price, m.quantity) for m in priced_mods)
    amounts = line_amounts(unit_price, line.quantity, mods_total, discount)

    return PricedLine(
        product_id=product.id,
        variant_id=line.variant_id or None,
        quantity=line.quantity,
        unit_price=unit_price,
        modifiers=tuple(priced_mods),
        discount=discount,
        discount_amount=amounts.discount_amount,
        subtotal=amounts.subtotal,
        station=product.station,
        notes=line.notes or None,
    )


# ── Request validation (before any transaction) ───────────────────────────────
@dataclass(frozen=True)
class ValidatedOrder:
    command: CreateOrder
    order_type: OrderType
    discount: Discount | None
    line_discounts: tuple[Discount | None, ...]
    catering_date: datetime | None
    catering_dp_amount: Decimal | None


def validate_line(index: int, line: OrderLine) -> Discount | None:
    if not line.product_id:
        raise ValidationError(f"items[{index}]: product_id is required")
    if line.quantity <= 0:
        raise InvalidQuantityError(f"items[{index}]: quantity must be > 0")
    for j, mod in enumerate(line.modifiers):
        if not mod.modifier_id:
            raise ValidationError(f"items[{index}].modifiers[{j}]: modifier_id is required")
        if mod.quantity <= 0:
            raise InvalidQuantityError(f"items[{index}].modifiers[{j}]: quantity must be > 0")
    try:
        return parse_discount(line.discount_type, line.discount_value)
    except ValidationError as exc:
        raise type(exc)(f"items[{index}]: {exc.detail}")


def validate_order(cmd: CreateOrder) -> ValidatedOrder:
    try:
        order_type = OrderType(cmd.order_type)
    except ValueError:
        raise InvalidOrderTypeError(f"invalid order_type {cmd.order_type!r}")

    if not cmd.items:
        raise EmptyItemsError()

    catering_date = None
    catering_dp_amount = None
    if order_type is OrderType.CATERING:
        if not cmd.catering_date:
            raise CateringDateRequiredError()
        if not cmd.customer_id:
            raise CateringCustomerRequiredError()
        try:
            catering_date = parse_timestamp(cmd.catering_date)
        except ValueError:
            raise InvalidCateringDateError(f"invalid catering_date {cmd.catering_date!r}")
        if cmd.catering_dp_amount not in (None, ""):
            try:
                catering_dp_amount = parse_money(cmd.catering_dp_amount)
            except ValueError:
                raise InvalidCateringDpAmountError()
            if catering_dp_amount < ZERO:
                raise InvalidCateringDpAmountError("catering_dp_amount must not be negative")

    discount = parse_discount(cmd.discount_type, cmd.discount_value)
    line_discounts = tuple(validate_line(i, line) for i, line in enumerate(cmd.items))

    return ValidatedOrder(
        command=cmd,
        order_type=order_type,
        discount=discount,
        line_discounts=line_discounts,
        catering_date=catering_date,
        catering_dp_amount=catering_dp_amount,
    )
