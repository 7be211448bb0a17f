"""
Order Engine — Pydantic schemas for payments
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from order_engine.core.commands import AddPayment
from order_engine.schemas.order import OrderResponse


class PaymentRequest(BaseModel):
    payment_method: str = Field(..., examples=["CASH", "QRIS", "TRANSFER"])
    amount: str | int = Field(..., examples=["25000.00"])
    amount_received: str | int | None = Field(None, examples=["50000"])
    reference_number: str | None = Field(None, max_length=100)

    def to_command(self, outlet_id: str, order_id: str, processed_by: str) -> AddPayment:
        return AddPayment(
            outlet_id=outlet_id,
            order_id=order_id,
            payment_method=self.payment_method,
            amount=self.amount,
            amount_received=self.amount_received,
            reference_number=self.reference_number,
            processed_by=processed_by,
        )


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    payment_method: str
    amount: Decimal
    status: str
    reference_number: str | None
    amount_received: Decimal | None
    change_amount: Decimal | None
    processed_by: str
    processed_at: datetime | None

    model_config = {"from_attributes": True}


class PaymentResultResponse(BaseModel):
    payment: PaymentResponse
    order: OrderResponse
    total_paid: Decimal
    remaining: Decimal
    fully_paid: bool
