"""
Order Engine — Pydantic schemas for orders

Monetary inputs are strings (or integers) so they never pass through float;
monetary outputs are Decimals, which serialize as strings.
"""
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from order_engine.core.commands import CreateOrder, ModifierLine, OrderLine
from order_engine.db.interfaces import ItemAggregate, OrderAggregate, OrderPage
from order_engine.models.order import OrderItemStatus, OrderStatus

Money = str | int


class ModifierRequest(BaseModel):
    modifier_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class OrderItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1, examples=["3f1c9b9e-7c1a-4bb1-9d0e-6a1f3c2b8e11"])
    variant_id: str | None = None
    quantity: int = Field(..., ge=1)
    notes: str | None = Field(None, max_length=500)
    discount_type: str | None = Field(None, examples=["PERCENTAGE", "FIXED_AMOUNT"])
    discount_value: Money | None = None
    modifiers: list[ModifierRequest] = Field(default_factory=list)

    def to_line(self) -> OrderLine:
        return OrderLine(
            product_id=self.product_id,
            variant_id=self.variant_id,
            quantity=self.quantity,
            notes=self.notes,
            discount_type=self.discount_type,
            discount_value=self.discount_value,
            modifiers=tuple(ModifierLine(m.modifier_id, m.quantity) for m in self.modifiers),
        )


class OrderRequest(BaseModel):
    order_type: str = Field(..., examples=["DINE_IN"])
    items: list[OrderItemRequest] = Field(..., max_length=100)
    customer_id: str | None = None
    table_number: str | None = Field(None, max_length=20)
    notes: str | None = Field(None, max_length=500)
    discount_type: str | None = None
    discount_value: Money | None = None
    catering_date: str | None = Field(None, examples=["2026-11-01T10:00:00+07:00"])
    catering_dp_amount: Money | None = None
    delivery_platform: str | None = Field(None, max_length=50)
    delivery_address: str | None = None

    def to_command(self, outlet_id: str, created_by: str) -> CreateOrder:
        return CreateOrder(
            outlet_id=outlet_id,
            created_by=created_by,
            order_type=self.order_type,
            items=tuple(i.to_line() for i in self.items),
            customer_id=self.customer_id,
            table_number=self.table_number,
            notes=self.notes,
            discount_type=self.discount_type,
            discount_value=self.discount_value,
            catering_date=self.catering_date,
            catering_dp_amount=self.catering_dp_amount,
            delivery_platform=self.delivery_platform,
            delivery_address=self.delivery_address,
        )


class StatusUpdateRequest(BaseModel):
    expected_status: OrderStatus
    status: OrderStatus


class ItemStatusUpdateRequest(BaseModel):
    expected_status: OrderItemStatus
    status: OrderItemStatus


class UpdateItemRequest(BaseModel):
    quantity: int = Field(..., ge=1)
    notes: str | None = Field(None, max_length=500)


class ModifierResponse(BaseModel):
    id: str
    modifier_id: str
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class OrderItemBase(BaseModel):
    id: str
    product_id: str
    variant_id: str | None
    quantity: int
    unit_price: Decimal
    discount_type: str | None
    discount_value: Decimal | None
    discount_amount: Decimal
    subtotal: Decimal
    notes: str | None
    station: str | None
    status: str

    model_config = {"from_attributes": True}


class OrderItemResponse(OrderItemBase):
    modifiers: list[ModifierResponse] = Field(default_factory=list)

    @classmethod
    def from_aggregate(cls, agg: ItemAggregate) -> "OrderItemResponse":
        data = OrderItemBase.model_validate(agg.item).model_dump()
        return cls(**data, modifiers=[ModifierResponse.model_validate(m) for m in agg.modifiers])


class OrderResponse(BaseModel):
    id: str
    outlet_id: str
    order_number: str
    business_date: date
    customer_id: str | None
    order_type: str
    status: str
    table_number: str | None
    notes: str | None
    subtotal: Decimal
    discount_type: str | None
    discount_value: Decimal | None
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    catering_date: datetime | None
    catering_status: str | None
    catering_dp_amount: Decimal | None
    delivery_platform: str | None
    delivery_address: str | None
    created_by: str
    created_at: datetime | None
    updated_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    items: list[OrderItemResponse] = Field(default_factory=list)

    @classmethod
    def from_aggregate(cls, agg: OrderAggregate) -> "OrderDetailResponse":
        data = OrderResponse.model_validate(agg.order).model_dump()
        return cls(**data, items=[OrderItemResponse.from_aggregate(i) for i in agg.items])


class ItemChangeResponse(BaseModel):
    item: OrderItemResponse
    order: OrderResponse


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    limit: int
    offset: int

    @classmethod
    def from_page(cls, page: OrderPage) -> "OrderListResponse":
        return cls(
            orders=[OrderResponse.model_validate(o) for o in page.orders],
            limit=page.limit,
            offset=page.offset,
        )
