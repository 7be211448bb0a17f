"""
Order Engine — Payments API

Flow (POST):
  1. JWT validated by middleware; `sub` becomes processed_by
  2. Replays short-circuited by IdempotencyMiddleware
  3. Ledger insert under the order's row lock (payment_ops.add_payment)
  4. Order auto-completes when the ledger covers the total
"""
from fastapi import APIRouter, Depends, status

from order_engine.api.deps import get_clock, get_current_user, get_uow
from order_engine.core.clock import Clock
from order_engine.db import payment_ops
from order_engine.db.interfaces import UnitOfWork
from order_engine.schemas.order import OrderResponse
from order_engine.schemas.payment import PaymentRequest, PaymentResponse, PaymentResultResponse

router = APIRouter(prefix="/outlets/{outlet_id}/orders/{order_id}/payments", tags=["payments"])


@router.post("", response_model=PaymentResultResponse, status_code=status.HTTP_201_CREATED)
async def add_payment(
    outlet_id: str,
    order_id: str,
    payload: PaymentRequest,
    user_id: str = Depends(get_current_user),
    uow: UnitOfWork = Depends(get_uow),
    clock: Clock = Depends(get_clock),
):
    result = await payment_ops.add_payment(uow, payload.to_command(outlet_id, order_id, user_id), clock)
    return PaymentResultResponse(
        payment=PaymentResponse.model_validate(result.payment),
        order=OrderResponse.model_validate(result.order),
        total_paid=result.total_paid,
        remaining=result.remaining,
        fully_paid=result.fully_paid,
    )


@router.get("", response_model=list[PaymentResponse])
async def list_payments(outlet_id: str, order_id: str, uow: UnitOfWork = Depends(get_uow)):
    payments = await payment_ops.list_payments(uow, outlet_id, order_id)
    return [PaymentResponse.model_validate(p) for p in payments]
