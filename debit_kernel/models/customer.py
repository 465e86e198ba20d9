"""
Module: debit_kernel.models.customer
Responsibility: ORM persistence for billed customers.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Only ACTIVE customers may be charged (checked by ChargeScheduler via
      Customer.can_be_charged).
"""

from enum import Enum

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase


class CustomerStatus(str, Enum):
    """Customer lifecycle status."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class Customer(TimestampedBase):
    """
    A billed party holding one or more direct-debit mandates.

    Guarantees:
        - email is unique (uq_customer_email).
        - name and vat_number are carried for invoice-receipt issuance only.
    """

    __tablename__ = "customers"

    __table_args__ = (
        UniqueConstraint("email", name="uq_customer_email"),
        Index("idx_customer_status", "status"),
    )

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Tax identification, used by the invoicing system
    vat_number: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CustomerStatus.ACTIVE.value,
    )

    @property
    def can_be_charged(self) -> bool:
        """True iff the customer is active."""
        return self.status == CustomerStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Customer {self.email} ({self.status})>"
