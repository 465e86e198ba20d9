"""
Module: debit_kernel.models.adjustment
Responsibility: ORM persistence for manual amount adjustments.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount_cents > 0; the sign comes from adjustment_type.
    - Append-only: rows are never updated or deleted (db/immutability.py).
    - Rows exist only for adjustments that were accepted; a rejected
      adjustment leaves no trace here (its rejection is not logged as an
      adjustment either).
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase, UUIDString


class AdjustmentType(str, Enum):
    """Direction of an adjustment."""

    INCREASE = "increase"
    DECREASE = "decrease"


class Adjustment(TimestampedBase):
    """A signed change to a scheduled payment's final amount."""

    __tablename__ = "payment_adjustments"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_adjustment_amount_positive"),
        Index("idx_adjustment_payment", "payment_id"),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    adjustment_type: Mapped[str] = mapped_column(
        String(20),
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

    @property
    def signed_amount_cents(self) -> int:
        if self.adjustment_type == AdjustmentType.DECREASE.value:
            return -self.amount_cents
        return self.amount_cents

    def __repr__(self) -> str:
        return f"<Adjustment {self.adjustment_type} {self.amount_cents} on {self.payment_id}>"
