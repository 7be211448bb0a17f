"""
Order Engine — Payment ledger

add_payment runs as one transaction that takes the order's row lock first
and holds it to the end:

  lock order → read status + paid sum → guard → insert payment
  → auto-complete when paid in full → catering DP/settlement

Two payments submitted at the same time for the same order therefore run one
after the other, and the second sees the first one's row in its sum.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from order_engine.core.clock import Clock, SystemClock
from order_engine.core.commands import AddPayment
from order_engine.core.errors import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    OrderAlreadyPaidError,
    OrderClosedError,
    OrderNotFoundError,
    OverpaymentError,
)
from order_engine.core.money import ZERO, parse_money, to_money
from order_engine.db.interfaces import UnitOfWork
from order_engine.db.status_ops import settle_if_paid
from order_engine.models.order import CateringStatus, Order, OrderStatus, OrderType
from order_engine.models.payment import Payment, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    payment: Payment
    order: Order
    total_paid: Decimal
    remaining: Decimal

    @property
    def fully_paid(self) -> bool:
        return self.remaining == ZERO


@dataclass(frozen=True)
class _ValidatedPayment:
    method: PaymentMethod
    amount: Decimal
    amount_received: Decimal | None
    change_amount: Decimal | None


def validate_payment(cmd: AddPayment) -> _ValidatedPayment:
    try:
        method = PaymentMethod(cmd.payment_method)
    except ValueError:
        raise InvalidPaymentMethodError(f"invalid payment_method {cmd.payment_method!r}")

    try:
        amount = parse_money(cmd.amount)
    except ValueError:
        raise InvalidAmountError()
    if amount <= ZERO:
        raise InvalidAmountError()

    received = change = None
    if method is PaymentMethod.CASH:
        if cmd.amount_received in (None, ""):
            raise InvalidAmountError("amount_received is required for CASH payments")
        try:
            received = parse_money(cmd.amount_received)
        except ValueError:
            raise InvalidAmountError("invalid amount_received")
        if received < amount:
            raise InvalidAmountError("amount_received must be >= amount")
        change = received - amount

    return _ValidatedPayment(method, amount, received, change)


async def add_payment(uow: UnitOfWork, cmd: AddPayment, clock: Clock | None = None) -> PaymentResult:
    """
    Append a payment to an order and complete the order once it is paid in
    full. Rejections (closed order, already paid, overpayment) leave the
    ledger untouched.
    """
    p = validate_payment(cmd)
    clock = clock or SystemClock()

    async with uow.begin() as tx:
        order = await tx.orders.lock_order(cmd.outlet_id, cmd.order_id)
        if order is None:
            raise OrderNotFoundError()

        # Explicit status guard; the sum alone can under-report a closed order.
        if order.status == OrderStatus.CANCELLED.value:
            raise OrderClosedError("cannot add payment to cancelled order", status=order.status)
        if order.status == OrderStatus.COMPLETED.value:
            raise OrderClosedError("cannot add payment to completed order", status=order.status)

        total = to_money(order.total_amount)
        paid_before = await tx.payments.sum_completed_payments(order.id)
        if paid_before >= total:
            raise OrderAlreadyPaidError(total_paid=str(paid_before), total_amount=str(total))
        paid_after = paid_before + p.amount
        if paid_after > total:
            raise OverpaymentError(remaining=str(total - paid_before))

        now = clock.now()
        payment = await tx.payments.insert_payment(Payment(
            id=str(uuid.uuid4()),
            order_id=order.id,
            payment_method=p.method.value,
            amount=p.amount,
            status=PaymentStatus.COMPLETED.value,
            reference_number=cmd.reference_number or None,
            amount_received=p.amount_received,
            change_amount=p.change_amount,
            processed_by=cmd.processed_by,
            processed_at=now,
        ))

        paid_after = await tx.payments.sum_completed_payments(order.id)
        if (order.order_type == OrderType.CATERING.value and paid_before == ZERO
                and order.catering_status == CateringStatus.BOOKED.value):
            order = await tx.orders.set_catering_status(order.id, CateringStatus.DP_PAID.value, now)
        order = await settle_if_paid(tx, order, paid_after, clock)

    logger.info("Payment %s of %s applied to order %s (paid %s of %s)",
                payment.id, payment.amount, order.id, paid_after, total)
    remaining = total - paid_after
    return PaymentResult(
        payment=payment,
        order=order,
        total_paid=paid_after,
        remaining=remaining if remaining > ZERO else ZERO,
    )


async def list_payments(uow: UnitOfWork, outlet_id: str, order_id: str) -> list[Payment]:
    async with uow.begin() as tx:
        order = await tx.orders.get_order(outlet_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        return await tx.payments.list_payments(order.id)
