"""
Order Engine — Payment DB model

[TRANSACTIONAL DATA] payments is an append-only ledger: rows are inserted
under the order's row lock and never updated or deleted.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from order_engine.db.database import Base


class PaymentMethod(str, PyEnum):
    CASH = "CASH"
    QRIS = "QRIS"
    TRANSFER = "TRANSFER"


class PaymentStatus(str, PyEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payments_amount_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.COMPLETED.value)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount_received: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    change_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    processed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
