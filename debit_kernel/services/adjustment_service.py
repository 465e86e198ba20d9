"""
AdjustmentService -- manual amount changes on scheduled payments.

Responsibility:
    Applies an increase or decrease to a payment's final amount while the
    payment is still SCHEDULED, recording the adjustment and its audit event
    atomically.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the admin endpoint and
    (through record_adjustment) by ChargeScheduler for adjustments submitted
    with a charge.

Invariants enforced:
    - final_amount_cents == original_amount_cents + sum(signed adjustments).
    - final_amount_cents >= 0: a decrease that would go below zero is
      rejected and nothing is persisted.
    - Only SCHEDULED payments are adjustable.  The status check and the
      update happen under the payment row lock, so an adjustment cannot
      interleave with the scheduler's claim for submission.

Failure modes:
    - ValidationError: bad type / amount / reason / actor, or a negative
      result (NegativeFinalAmountError).
    - PaymentNotFoundError: unknown payment.
    - PaymentNotAdjustableError: payment is past SCHEDULED.
    - StoreError: database failure.

Audit relevance:
    Each accepted adjustment writes an Adjustment row and a
    ``manual_adjustment_applied`` event carrying type, amount, reason, actor
    and the resulting final amount.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from debit_kernel.domain.adjustments import apply_delta, signed_delta, validate_adjustment
from debit_kernel.domain.dtos import StagedAdjustment
from debit_kernel.exceptions import PaymentNotAdjustableError
from debit_kernel.logging_config import LogContext, get_logger
from debit_kernel.models.adjustment import Adjustment
from debit_kernel.models.payment import Payment
from debit_kernel.services.base import BaseService, coerce_uuid, lock_payment
from debit_kernel.services.event_log import EventLog

logger = get_logger("services.adjustment_service")


def record_adjustment(
    session: Session,
    event_log: EventLog,
    payment: Payment,
    adjustment: StagedAdjustment,
) -> int:
    """Apply one validated adjustment to a locked, SCHEDULED payment.

    Preconditions: payment is row-locked by the caller and SCHEDULED.
    Postconditions: Adjustment row added, final amount updated, event
        recorded -- all in the caller's transaction.

    Returns:
        The new final amount in cents.

    Raises:
        NegativeFinalAmountError: Nothing is added to the session.
    """
    new_final = apply_delta(
        str(payment.id), payment.final_amount_cents, signed_delta(adjustment)
    )
    session.add(
        Adjustment(
            payment_id=payment.id,
            adjustment_type=adjustment.adjustment_type,
            amount_cents=adjustment.amount_cents,
            reason=adjustment.reason,
            created_by=adjustment.created_by,
        )
    )
    payment.final_amount_cents = new_final
    event_log.record(
        payment.id,
        "manual_adjustment_applied",
        {
            "type": adjustment.adjustment_type,
            "amount_cents": adjustment.amount_cents,
            "reason": adjustment.reason,
            "created_by": adjustment.created_by,
            "final_amount_cents": new_final,
        },
    )
    return new_final


class AdjustmentService(BaseService):
    """Applies manual adjustments to SCHEDULED payments.

    Contract:
        apply_adjustment() either persists the adjustment, the new final
        amount and the audit event together, or persists nothing.

    Non-goals:
        - Does NOT touch the gateway; submitted payments are corrected
          with refunds instead.
    """

    def apply_adjustment(
        self,
        payment_id: UUID | str,
        adjustment_type: str,
        amount_cents: int,
        reason: str,
        created_by: str,
    ) -> int:
        """Apply an increase or decrease and return the new final amount.

        Raises:
            ValidationError, PaymentNotFoundError, PaymentNotAdjustableError,
            StoreError.
        """
        pid = coerce_uuid("payment_id", payment_id)
        adjustment = validate_adjustment(adjustment_type, amount_cents, reason, created_by)

        with LogContext.bind(
            operation="apply_adjustment", payment_id=str(pid), actor_id=adjustment.created_by
        ):
            with self._transaction("apply_adjustment") as session:
                payment = lock_payment(session, pid)
                if not payment.is_adjustable:
                    logger.warning(
                        "adjustment_rejected_wrong_status",
                        extra={"status": payment.status},
                    )
                    raise PaymentNotAdjustableError(str(pid), payment.status)
                new_final = record_adjustment(
                    session, EventLog(session, self._clock), payment, adjustment
                )

            logger.info(
                "adjustment_applied",
                extra={
                    "adjustment_type": adjustment.adjustment_type,
                    "amount_cents": adjustment.amount_cents,
                    "final_amount_cents": new_final,
                },
            )
            return new_final
