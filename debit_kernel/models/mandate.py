"""
Module: debit_kernel.models.mandate
Responsibility: ORM persistence for direct-debit mandates (the customer's
    authorization for the gateway to pull funds).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Only an ACTIVE mandate may back a charge or a retry.
    - gateway_mandate_ref is unique: one local row per gateway mandate.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase, UUIDString


class MandateStatus(str, Enum):
    """Mandate lifecycle status as reported by the gateway."""

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Mandate(TimestampedBase):
    """A customer's direct-debit authorization at the gateway."""

    __tablename__ = "mandates"

    __table_args__ = (
        UniqueConstraint("gateway_mandate_ref", name="uq_mandate_gateway_ref"),
        Index("idx_mandate_customer_status", "customer_id", "status"),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    # Mandate identifier at the gateway (e.g. "MD000123")
    gateway_mandate_ref: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MandateStatus.PENDING.value,
    )

    def __repr__(self) -> str:
        return f"<Mandate {self.gateway_mandate_ref} ({self.status})>"
