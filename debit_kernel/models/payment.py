"""
Module: debit_kernel.models.payment
Responsibility: ORM persistence for a single recurring charge and its
    lifecycle state machine.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - final_amount_cents == original_amount_cents + sum(signed adjustments),
      and final_amount_cents >= 0 (maintained by AdjustmentService and
      ChargeScheduler; checked by CHECK constraints where expressible).
    - original_amount_cents never changes after insert (db/immutability.py).
    - Service-driven status changes follow VALID_TRANSITIONS.
    - Webhook-driven status changes never leave CHARGEBACK and never touch a
      payment held in a transient claim status (SUBMITTING, RETRYING).
      Notifications for a claimed payment are deferred, not rejected.

Failure modes:
    - IntegrityError on a negative amount or negative attempt count.
    - InvalidPaymentTransitionError (raised by services) on a transition
      outside the state machine.

Audit relevance:
    Every status change is mirrored by an append-only PaymentEvent row.  The
    payment row holds current state; the event log holds history.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase, UUIDString


class PaymentStatus(str, Enum):
    """
    Lifecycle status of a payment.

    State machine (service-driven):
        SCHEDULED  -> SUBMITTING
        SUBMITTING -> CREATED | SCHEDULED
        FAILED     -> RETRYING
        RETRYING   -> CREATED | FAILED

    Webhook-driven:
        any of WEBHOOK_SOURCE_STATUSES -> any of WEBHOOK_TARGET_STATUSES
        CHARGEBACK: absorbing
    """

    SCHEDULED = "scheduled"
    SUBMITTING = "submitting"    # claimed by ChargeScheduler, gateway call in flight
    CREATED = "created"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    RETRYING = "retrying"        # claimed by RetryDaemon, gateway call in flight
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    CHARGEBACK = "chargeback"


VALID_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.SCHEDULED: frozenset({PaymentStatus.SUBMITTING}),
    PaymentStatus.SUBMITTING: frozenset({
        PaymentStatus.CREATED, PaymentStatus.SCHEDULED,
    }),
    PaymentStatus.FAILED: frozenset({PaymentStatus.RETRYING}),
    PaymentStatus.RETRYING: frozenset({
        PaymentStatus.CREATED, PaymentStatus.FAILED,
    }),
}

# Transient statuses held while a gateway call is in flight
CLAIM_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.SUBMITTING,
    PaymentStatus.RETRYING,
})

# Statuses a gateway notification may move a payment out of
WEBHOOK_SOURCE_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.CREATED,
    PaymentStatus.SUBMITTED,
    PaymentStatus.CONFIRMED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
    PaymentStatus.CANCELLED,
})

# Statuses a gateway notification may report
WEBHOOK_TARGET_STATUSES: frozenset[PaymentStatus] = frozenset({
    PaymentStatus.CREATED,
    PaymentStatus.SUBMITTED,
    PaymentStatus.CONFIRMED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
    PaymentStatus.CANCELLED,
    PaymentStatus.CHARGEBACK,
})


class Payment(TimestampedBase):
    """
    One charge against one customer for one service.

    Contract:
        Created by ChargeScheduler in SCHEDULED.  The amount may only be
        adjusted while SCHEDULED.  Submission to the gateway records the
        attempt and the gateway payment id; webhooks drive it afterwards.

    Guarantees:
        - original_amount_cents is fixed at creation.
        - gateway_payment_id is unique when set.
        - attempts counts gateway submission attempts, including failed and
          unknown-outcome ones.
    """

    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint("original_amount_cents > 0", name="ck_payment_original_positive"),
        CheckConstraint("final_amount_cents >= 0", name="ck_payment_final_non_negative"),
        CheckConstraint("attempts >= 0", name="ck_payment_attempts_non_negative"),
        Index("idx_payment_customer_status", "customer_id", "status"),
        Index("idx_payment_status_attempt", "status", "last_attempt_at"),
        Index("uq_payment_gateway_id", "gateway_payment_id", unique=True),
    )

    customer_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("customers.id"),
        nullable=False,
    )

    # External service the charge bills for
    service_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    original_amount_cents: Mapped[int] = mapped_column(
        nullable=False,
    )

    final_amount_cents: Mapped[int] = mapped_column(
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.SCHEDULED.value,
    )

    attempts: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        server_default="0",
    )

    last_attempt_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    gateway_payment_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    # Invoice-receipt issued on confirmation
    invoice_document_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    invoice_pdf_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    invoice_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    @property
    def status_enum(self) -> PaymentStatus:
        """Return status as PaymentStatus enum (normalizes raw DB strings)."""
        return PaymentStatus(self.status)

    @property
    def is_adjustable(self) -> bool:
        return self.status_enum == PaymentStatus.SCHEDULED

    @property
    def is_claimed(self) -> bool:
        return self.status_enum in CLAIM_STATUSES

    @property
    def is_submitted(self) -> bool:
        """True once the gateway has acknowledged the charge."""
        return self.gateway_payment_id is not None

    def can_transition_to(self, target: PaymentStatus) -> bool:
        """Check a service-driven transition against VALID_TRANSITIONS."""
        return target in VALID_TRANSITIONS.get(self.status_enum, frozenset())

    def can_apply_webhook_status(self, target: PaymentStatus) -> bool:
        """Check a gateway-reported status against the webhook rules.

        Reporting the status the payment already holds is allowed; it is
        recorded without effect.
        """
        if target not in WEBHOOK_TARGET_STATUSES:
            return False
        if self.status_enum == target:
            return True
        return self.status_enum in WEBHOOK_SOURCE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Payment {self.id} {self.status} "
            f"{self.final_amount_cents} {self.currency}>"
        )
