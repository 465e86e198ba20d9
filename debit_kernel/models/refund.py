"""
Module: debit_kernel.models.refund
Responsibility: ORM persistence for refund requests against submitted payments.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A refund row exists only for a payment with a gateway_payment_id.
    - The row is written PENDING before the gateway is called, so a crash
      mid-call leaves evidence of the attempt.
    - Sum of PENDING + PROCESSED refunds never exceeds the payment's final
      amount (enforced by RefundService under the payment row lock).
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase, UUIDString


class RefundStatus(str, Enum):
    """Refund request status."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


# Statuses that count against the refund ceiling
OUTSTANDING_REFUND_STATUSES = frozenset({RefundStatus.PENDING, RefundStatus.PROCESSED})


class Refund(TimestampedBase):
    """A request to return (part of) a collected payment."""

    __tablename__ = "refunds"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_refund_amount_positive"),
        Index("idx_refund_payment_status", "payment_id", "status"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    amount_cents: Mapped[int] = mapped_column(
        nullable=False,
    )

    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RefundStatus.PENDING.value,
    )

    gateway_refund_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Refund {self.amount_cents} on {self.payment_id} ({self.status})>"
