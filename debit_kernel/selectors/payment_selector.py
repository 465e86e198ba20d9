"""
Module: debit_kernel.selectors.payment_selector
Responsibility: Read-only payment queries used by the services and by
    operators: unpaid-cap counting, retry eligibility, exhausted payments,
    webhook deduplication lookups and event history.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Retry eligibility is defined in exactly one place
      (retry_eligibility_clause / is_retry_eligible) and shared by the sweep
      query and the per-payment claim re-check.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from debit_kernel.domain.dtos import EventRecord, PaymentSnapshot
from debit_kernel.models.mandate import Mandate, MandateStatus
from debit_kernel.models.payment import Payment, PaymentStatus
from debit_kernel.models.payment_event import PaymentEvent
from debit_kernel.models.refund import OUTSTANDING_REFUND_STATUSES, Refund
from debit_kernel.selectors.base import BaseSelector


def retry_cutoff(now: datetime, retry_gap_days: int) -> datetime:
    """Latest last_attempt_at that is outside the cooldown window."""
    return now - timedelta(days=retry_gap_days)


def retry_eligibility_clause(now: datetime, max_retries: int, retry_gap_days: int):
    """SQL predicate: failed, under the attempt ceiling, out of cooldown."""
    return and_(
        Payment.status == PaymentStatus.FAILED.value,
        Payment.attempts < max_retries,
        or_(
            Payment.last_attempt_at.is_(None),
            Payment.last_attempt_at < retry_cutoff(now, retry_gap_days),
        ),
    )


def is_retry_eligible(
    payment: Payment, now: datetime, max_retries: int, retry_gap_days: int
) -> bool:
    """Python mirror of retry_eligibility_clause for a loaded row."""
    if payment.status != PaymentStatus.FAILED.value:
        return False
    if payment.attempts >= max_retries:
        return False
    if payment.last_attempt_at is None:
        return True
    return payment.last_attempt_at < retry_cutoff(now, retry_gap_days)


def to_snapshot(payment: Payment) -> PaymentSnapshot:
    return PaymentSnapshot(
        payment_id=payment.id,
        customer_id=payment.customer_id,
        service_id=payment.service_id,
        status=payment.status,
        original_amount_cents=payment.original_amount_cents,
        final_amount_cents=payment.final_amount_cents,
        currency=payment.currency,
        attempts=payment.attempts,
        last_attempt_at=payment.last_attempt_at,
        gateway_payment_id=payment.gateway_payment_id,
    )


class PaymentSelector(BaseSelector):
    """Read-only queries over payments, mandates, refunds and events."""

    def get(self, payment_id: UUID) -> PaymentSnapshot | None:
        payment = self.session.get(Payment, payment_id)
        return to_snapshot(payment) if payment is not None else None

    def count_failed_for_customer(self, customer_id: UUID) -> int:
        """Number of the customer's payments currently in FAILED."""
        stmt = select(func.count(Payment.id)).where(
            Payment.customer_id == customer_id,
            Payment.status == PaymentStatus.FAILED.value,
        )
        return self.session.execute(stmt).scalar_one()

    def active_mandate_ref(self, customer_id: UUID) -> str | None:
        """Gateway reference of the customer's active mandate, if any.

        When several mandates are active the most recently created wins.
        """
        stmt = (
            select(Mandate.gateway_mandate_ref)
            .where(
                Mandate.customer_id == customer_id,
                Mandate.status == MandateStatus.ACTIVE.value,
            )
            .order_by(Mandate.created_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def retry_candidate_ids(
        self,
        now: datetime,
        max_retries: int,
        retry_gap_days: int,
        limit: int | None = None,
    ) -> list[UUID]:
        """Ids of payments eligible for a retry, oldest attempt first."""
        stmt = (
            select(Payment.id)
            .where(retry_eligibility_clause(now, max_retries, retry_gap_days))
            .order_by(
                Payment.last_attempt_at.is_(None).desc(),
                Payment.last_attempt_at,
                Payment.created_at,
            )
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def exhausted(self, max_retries: int) -> list[PaymentSnapshot]:
        """FAILED payments that have used up every allowed attempt."""
        stmt = (
            select(Payment)
            .where(
                Payment.status == PaymentStatus.FAILED.value,
                Payment.attempts >= max_retries,
            )
            .order_by(Payment.last_attempt_at)
        )
        return [to_snapshot(p) for p in self.session.execute(stmt).scalars()]

    def outstanding_refund_total(self, payment_id: UUID) -> int:
        """Sum of PENDING and PROCESSED refunds against a payment."""
        stmt = select(func.coalesce(func.sum(Refund.amount_cents), 0)).where(
            Refund.payment_id == payment_id,
            Refund.status.in_([s.value for s in OUTSTANDING_REFUND_STATUSES]),
        )
        return int(self.session.execute(stmt).scalar_one())

    def has_event(self, idempotency_key: str) -> bool:
        """True if an event with this idempotency key is already recorded."""
        stmt = select(PaymentEvent.id).where(
            PaymentEvent.idempotency_key == idempotency_key
        )
        return self.session.execute(stmt).first() is not None

    def event_history(self, payment_id: UUID) -> list[EventRecord]:
        """Every event recorded for a payment, in order of occurrence."""
        stmt = (
            select(PaymentEvent)
            .where(PaymentEvent.payment_id == payment_id)
            .order_by(PaymentEvent.occurred_at, PaymentEvent.event_type)
        )
        return [
            EventRecord(
                event_type=e.event_type,
                raw_payload=e.raw_payload,
                occurred_at=e.occurred_at,
                idempotency_key=e.idempotency_key,
            )
            for e in self.session.execute(stmt).scalars()
        ]
