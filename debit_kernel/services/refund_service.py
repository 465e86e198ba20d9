"""
RefundService -- refunds against submitted payments.

Responsibility:
    Records a refund request, asks the gateway to refund, and records the
    outcome on the refund row.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the admin refund
    endpoint.

Invariants enforced:
    - Only payments with a gateway payment id can be refunded.
    - Refund ceiling: pending + processed refunds never exceed the payment's
      final amount.  The check and the PENDING insert happen under the
      payment row lock, so concurrent refunds cannot both pass.
    - The PENDING row is committed before the gateway call.
    - The payment's status is never changed here; the gateway's webhook
      reports the refund's effect.

Failure modes:
    - ValidationError: bad amount / reason / actor.
    - PaymentNotSubmittedError: unknown payment or no gateway id.
    - RefundCeilingExceededError: the ceiling would be breached.
    - GatewayRequestError: refund marked FAILED, ``refund_request_failed``
      recorded, error re-raised.
    - GatewayTimeoutError: refund stays PENDING (it still counts against the
      ceiling), ``refund_outcome_unknown`` recorded, error re-raised.

Audit relevance:
    Events: refund_requested, refund_request_processed,
    refund_request_failed, refund_outcome_unknown.
"""

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from debit_kernel.domain.adjustments import require_positive_cents, require_text
from debit_kernel.domain.clock import Clock
from debit_kernel.domain.gateway import GatewayClient
from debit_kernel.exceptions import (
    GatewayTimeoutError,
    PaymentNotFoundError,
    PaymentNotSubmittedError,
    RefundCeilingExceededError,
    StoreError,
)
from debit_kernel.logging_config import LogContext, get_logger
from debit_kernel.models.refund import Refund, RefundStatus
from debit_kernel.selectors.payment_selector import PaymentSelector
from debit_kernel.services.base import BaseService, coerce_uuid, lock_payment
from debit_kernel.services.event_log import EventLog
from debit_kernel.utils.idempotency import refund_idempotency_key

logger = get_logger("services.refund_service")


class RefundService(BaseService):
    """Issues refunds for submitted payments.

    Non-goals:
        - Does NOT move the payment to REFUNDED; that is a gateway-reported
          status applied by the WebhookReconciler.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: GatewayClient,
        clock: Clock,
    ):
        super().__init__(session_factory, clock)
        self._gateway = gateway

    def issue_refund(
        self,
        payment_id: UUID | str,
        amount_cents: int,
        reason: str,
        created_by: str,
    ) -> UUID:
        """Refund part or all of a submitted payment.

        Returns:
            The local refund id (the refund is PROCESSED on return).
        """
        pid = coerce_uuid("payment_id", payment_id)
        amount_cents = require_positive_cents("amount_cents", amount_cents)
        reason = require_text("reason", reason)
        created_by = require_text("created_by", created_by)

        with LogContext.bind(
            operation="issue_refund", payment_id=str(pid), actor_id=created_by
        ):
            with self._transaction("request_refund") as session:
                try:
                    payment = lock_payment(session, pid)
                except PaymentNotFoundError:
                    raise PaymentNotSubmittedError(str(pid)) from None
                if not payment.is_submitted:
                    raise PaymentNotSubmittedError(str(pid))

                already = PaymentSelector(session).outstanding_refund_total(pid)
                if already + amount_cents > payment.final_amount_cents:
                    logger.warning(
                        "refund_rejected_ceiling",
                        extra={
                            "requested_cents": amount_cents,
                            "already_refunded_cents": already,
                            "final_amount_cents": payment.final_amount_cents,
                        },
                    )
                    raise RefundCeilingExceededError(
                        str(pid), amount_cents, already, payment.final_amount_cents
                    )

                refund = Refund(
                    payment_id=pid,
                    amount_cents=amount_cents,
                    reason=reason,
                    created_by=created_by,
                    status=RefundStatus.PENDING.value,
                )
                session.add(refund)
                session.flush()
                refund_id = refund.id
                gateway_payment_id = payment.gateway_payment_id
                EventLog(session, self._clock).record(
                    pid,
                    "refund_requested",
                    {
                        "refund_id": str(refund_id),
                        "amount_cents": amount_cents,
                        "reason": reason,
                        "created_by": created_by,
                    },
                )

            try:
                gateway_refund_id = self._gateway.refund_payment(
                    gateway_payment_id=gateway_payment_id,
                    amount_cents=amount_cents,
                    reason=reason,
                    idempotency_key=refund_idempotency_key(refund_id),
                )
            except GatewayTimeoutError:
                logger.warning("refund_outcome_unknown", extra={"refund_id": str(refund_id)})
                self._record_event_after_failure(
                    pid, "refund_outcome_unknown", {"refund_id": str(refund_id)}
                )
                raise
            except Exception as exc:
                self._mark_failed(pid, refund_id, exc)
                raise

            with self._transaction("record_refund_processed") as session:
                refund = session.get(Refund, refund_id)
                refund.status = RefundStatus.PROCESSED.value
                refund.gateway_refund_id = gateway_refund_id
                EventLog(session, self._clock).record(
                    pid,
                    "refund_request_processed",
                    {
                        "refund_id": str(refund_id),
                        "gateway_refund_id": gateway_refund_id,
                        "amount_cents": amount_cents,
                    },
                )

            logger.info(
                "refund_processed",
                extra={"refund_id": str(refund_id), "gateway_refund_id": gateway_refund_id},
            )
            return refund_id

    def _mark_failed(self, payment_id: UUID, refund_id: UUID, error: Exception) -> None:
        logger.error(
            "refund_request_failed",
            extra={"refund_id": str(refund_id), "error": str(error)},
        )
        try:
            with self._transaction("record_refund_failed") as session:
                refund = session.get(Refund, refund_id)
                refund.status = RefundStatus.FAILED.value
                refund.error = str(error)
                EventLog(session, self._clock).record(
                    payment_id,
                    "refund_request_failed",
                    {"refund_id": str(refund_id), "error": str(error)},
                )
        except StoreError:
            logger.exception("refund_failure_record_failed", extra={"refund_id": str(refund_id)})
