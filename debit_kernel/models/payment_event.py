"""
Module: debit_kernel.models.payment_event
Responsibility: ORM persistence for the append-only payment event log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: rows are never updated or deleted (db/immutability.py).
    - idempotency_key is UNIQUE when set.  Inbound webhook events store
      "webhook:<action>:<event_id>" here, so a replayed notification cannot
      be recorded twice even when two deliveries race.

Failure modes:
    - IntegrityError on a duplicate idempotency_key.  WebhookReconciler
      treats this as a duplicate delivery, not an error.

Audit relevance:
    This table is the complete history of every payment: scheduling,
    submissions, gateway outcomes, adjustments, refunds, webhook deliveries
    and operator-review flags.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import Base, UUIDString


class PaymentEvent(Base):
    """One entry in a payment's audit history."""

    __tablename__ = "payment_events"

    __table_args__ = (
        Index("idx_payment_event_payment", "payment_id", "occurred_at"),
        Index("idx_payment_event_type", "event_type"),
        Index("uq_payment_event_idempotency", "idempotency_key", unique=True),
    )

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("payments.id"),
        nullable=False,
    )

    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    raw_payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
    )

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Clock-supplied, not server default, so tests can reason about ordering
    occurred_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<PaymentEvent {self.event_type} for {self.payment_id}>"
