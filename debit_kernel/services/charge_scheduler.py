"""
ChargeScheduler -- creates a payment and submits it to the gateway.

Responsibility:
    Validates that a customer may be charged, records the payment in
    SCHEDULED, applies any adjustments submitted with the request, then
    submits the final amount to the gateway and records the outcome.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the charge endpoint.

Invariants enforced:
    - Only ACTIVE customers with an ACTIVE mandate are charged.
    - Unpaid cap: a charge is rejected, with no side effects, when the
      customer's FAILED count is >= max_unpaid_allowed.  Charges insert
      SCHEDULED rows, so concurrent charges never move each other's count.
    - Submission is claimed (SCHEDULED -> SUBMITTING) under the payment row
      lock, so adjustments cannot change the amount mid-submission.
    - Every gateway request carries the idempotency key
      "<payment_id>:<attempt>".

Failure modes:
    - ValidationError / CustomerNotFoundError / CustomerInactiveError /
      NoActiveMandateError / UnpaidLimitExceededError: nothing persisted.
    - GatewayRequestError: payment returns to SCHEDULED and a
      ``gateway_creation_failed`` event is recorded.
    - GatewayTimeoutError: the attempt is recorded, the payment moves to
      CREATED without a gateway id and ``gateway_outcome_unknown`` is
      recorded.  The gateway's webhook (matched by the payment_id metadata)
      settles the outcome.  The payment is never resubmitted blindly.
    - ReconciliationRiskError: the gateway accepted the charge but the
      store update failed; ``db_update_after_gc_success_failed`` is
      recorded when possible.

Audit relevance:
    Events: scheduled, manual_adjustment_applied, created,
    gateway_creation_failed, gateway_outcome_unknown,
    db_update_after_gc_success_failed.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from debit_kernel.domain.adjustments import require_positive_cents, require_text, validate_adjustment
from debit_kernel.domain.clock import Clock
from debit_kernel.domain.dtos import StagedAdjustment
from debit_kernel.domain.gateway import GatewayClient
from debit_kernel.exceptions import (
    CustomerInactiveError,
    CustomerNotFoundError,
    GatewayTimeoutError,
    InvalidPaymentTransitionError,
    NoActiveMandateError,
    ReconciliationRiskError,
    StoreError,
    UnpaidLimitExceededError,
)
from debit_kernel.logging_config import LogContext, get_logger
from debit_kernel.models.customer import Customer
from debit_kernel.models.payment import Payment, PaymentStatus
from debit_kernel.selectors.payment_selector import PaymentSelector
from debit_kernel.services.adjustment_service import record_adjustment
from debit_kernel.services.base import BaseService, coerce_uuid, lock_payment
from debit_kernel.services.event_log import EventLog
from debit_kernel.utils.idempotency import charge_idempotency_key

logger = get_logger("services.charge_scheduler")


def _as_staged(item: StagedAdjustment | dict) -> StagedAdjustment:
    if isinstance(item, dict):
        return validate_adjustment(
            item.get("type"),
            item.get("amount_cents"),
            item.get("reason"),
            item.get("created_by"),
        )
    return validate_adjustment(
        item.adjustment_type, item.amount_cents, item.reason, item.created_by
    )


class ChargeScheduler(BaseService):
    """Schedules and submits a charge for a customer.

    Contract:
        charge_user() returns the new payment id once the gateway has
        accepted the charge.  Every rejection before the payment row is
        written leaves the store untouched.

    Non-goals:
        - Does NOT retry a failed submission; the RetryDaemon owns retries
          of FAILED payments and SCHEDULED ones are resubmitted by calling
          submit() again.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: GatewayClient,
        clock: Clock,
    ):
        super().__init__(session_factory, clock)
        self._gateway = gateway

    def charge_user(
        self,
        customer_id: UUID | str,
        service_id: str,
        amount_cents: int,
        adjustments: Sequence[StagedAdjustment | dict] = (),
    ) -> UUID:
        """Schedule a payment and submit it to the gateway.

        Preconditions: customer ACTIVE, an ACTIVE mandate exists, FAILED
            count < max_unpaid_allowed.
        Postconditions: On success the payment is CREATED with attempts=1
            and a gateway payment id.

        Args:
            customer_id: Customer to charge.
            service_id: External service being billed.
            amount_cents: Original amount in minor units (> 0).
            adjustments: Adjustments applied before submission.

        Returns:
            The payment id.
        """
        cid = coerce_uuid("customer_id", customer_id)
        service_id = require_text("service_id", service_id)
        amount_cents = require_positive_cents("amount_cents", amount_cents)
        staged = [_as_staged(item) for item in adjustments]

        with LogContext.bind(operation="charge_user", customer_id=str(cid)):
            settings = self._load_settings()

            with self._transaction("schedule_payment") as session:
                customer = session.get(Customer, cid)
                if customer is None:
                    raise CustomerNotFoundError(str(cid))
                if not customer.can_be_charged:
                    raise CustomerInactiveError(str(cid), customer.status)

                selector = PaymentSelector(session)
                mandate_ref = selector.active_mandate_ref(cid)
                if mandate_ref is None:
                    raise NoActiveMandateError(str(cid))

                failed_count = selector.count_failed_for_customer(cid)
                if failed_count >= settings.max_unpaid_allowed:
                    logger.warning(
                        "charge_rejected_unpaid_limit",
                        extra={
                            "failed_count": failed_count,
                            "max_unpaid_allowed": settings.max_unpaid_allowed,
                        },
                    )
                    raise UnpaidLimitExceededError(
                        str(cid), failed_count, settings.max_unpaid_allowed
                    )

                payment = Payment(
                    customer_id=cid,
                    service_id=service_id,
                    original_amount_cents=amount_cents,
                    final_amount_cents=amount_cents,
                    currency=settings.default_currency,
                    status=PaymentStatus.SCHEDULED.value,
                    attempts=0,
                )
                session.add(payment)
                session.flush()

                event_log = EventLog(session, self._clock)
                event_log.record(
                    payment.id,
                    "scheduled",
                    {
                        "customer_id": str(cid),
                        "service_id": service_id,
                        "amount_cents": amount_cents,
                        "currency": settings.default_currency,
                    },
                )
                # Recalculate the final amount from the adjustments tied to
                # this payment.  A fresh payment only has the ones staged
                # with this request.
                for adjustment in staged:
                    record_adjustment(session, event_log, payment, adjustment)
                payment_id = payment.id

            logger.info(
                "payment_scheduled",
                extra={"payment_id": str(payment_id), "amount_cents": amount_cents},
            )
            return self.submit(payment_id, mandate_ref=mandate_ref)

    def submit(self, payment_id: UUID | str, mandate_ref: str | None = None) -> UUID:
        """Submit a SCHEDULED payment to the gateway.

        Also used to resubmit a payment whose earlier submission failed
        (it returned to SCHEDULED).

        Raises:
            InvalidPaymentTransitionError: Payment is not SCHEDULED.
            NoActiveMandateError: mandate_ref not given and none is active.
            GatewayRequestError, GatewayTimeoutError, ReconciliationRiskError.
        """
        pid = coerce_uuid("payment_id", payment_id)

        with LogContext.bind(operation="submit_payment", payment_id=str(pid)):
            with self._transaction("claim_payment") as session:
                payment = lock_payment(session, pid)
                if not payment.can_transition_to(PaymentStatus.SUBMITTING):
                    raise InvalidPaymentTransitionError(
                        str(pid), payment.status, PaymentStatus.SUBMITTING.value
                    )
                if mandate_ref is None:
                    mandate_ref = PaymentSelector(session).active_mandate_ref(
                        payment.customer_id
                    )
                    if mandate_ref is None:
                        raise NoActiveMandateError(str(payment.customer_id))
                payment.status = PaymentStatus.SUBMITTING.value
                attempt = payment.attempts + 1
                amount_cents = payment.final_amount_cents
                currency = payment.currency
                service_id = payment.service_id

            idempotency_key = charge_idempotency_key(pid, attempt)
            try:
                gateway_payment_id = self._gateway.create_payment(
                    mandate_ref=mandate_ref,
                    amount_cents=amount_cents,
                    currency=currency,
                    description=f"Payment for Service {service_id}",
                    metadata={"payment_id": str(pid)},
                    idempotency_key=idempotency_key,
                )
            except GatewayTimeoutError as exc:
                exc.payment_id = str(pid)
                self._record_unknown_outcome(pid, attempt, idempotency_key)
                raise
            except Exception as exc:
                self._release_claim(pid, attempt, exc)
                raise

            self._record_success(pid, attempt, gateway_payment_id, amount_cents)
            return pid

    def _release_claim(self, payment_id: UUID, attempt: int, error: Exception) -> None:
        """Return a claimed payment to SCHEDULED after a gateway failure."""
        logger.error(
            "gateway_creation_failed",
            extra={"attempt": attempt, "error": str(error)},
        )
        try:
            with self._transaction("release_claim") as session:
                payment = lock_payment(session, payment_id)
                if payment.status == PaymentStatus.SUBMITTING.value:
                    payment.status = PaymentStatus.SCHEDULED.value
                EventLog(session, self._clock).record(
                    payment_id,
                    "gateway_creation_failed",
                    {
                        "error": str(error),
                        "error_code": getattr(error, "code", type(error).__name__),
                        "attempt": attempt,
                    },
                )
        except StoreError:
            logger.exception("claim_release_failed", extra={"attempt": attempt})

    def _record_unknown_outcome(
        self, payment_id: UUID, attempt: int, idempotency_key: str
    ) -> None:
        """Record an attempt whose gateway outcome is unknown."""
        logger.warning(
            "gateway_outcome_unknown",
            extra={"attempt": attempt, "idempotency_key": idempotency_key},
        )
        try:
            with self._transaction("record_unknown_outcome") as session:
                payment = lock_payment(session, payment_id)
                payment.status = PaymentStatus.CREATED.value
                payment.attempts = attempt
                payment.last_attempt_at = self._clock.now_utc()
                EventLog(session, self._clock).record(
                    payment_id,
                    "gateway_outcome_unknown",
                    {"attempt": attempt, "idempotency_key": idempotency_key},
                )
        except StoreError:
            logger.exception("unknown_outcome_record_failed", extra={"attempt": attempt})

    def _record_success(
        self,
        payment_id: UUID,
        attempt: int,
        gateway_payment_id: str,
        amount_cents: int,
    ) -> None:
        try:
            with self._transaction("record_gateway_success") as session:
                payment = lock_payment(session, payment_id)
                payment.status = PaymentStatus.CREATED.value
                payment.attempts = attempt
                payment.last_attempt_at = self._clock.now_utc()
                payment.gateway_payment_id = gateway_payment_id
                EventLog(session, self._clock).record(
                    payment_id,
                    "created",
                    {
                        "gateway_payment_id": gateway_payment_id,
                        "amount_cents": amount_cents,
                        "attempt": attempt,
                    },
                )
        except StoreError as exc:
            logger.critical(
                "db_update_after_gc_success_failed",
                extra={"gateway_payment_id": gateway_payment_id, "error": exc.reason},
            )
            self._record_event_after_failure(
                payment_id,
                "db_update_after_gc_success_failed",
                {"gateway_payment_id": gateway_payment_id, "error": exc.reason},
            )
            raise ReconciliationRiskError(
                str(payment_id), gateway_payment_id, exc.reason
            ) from exc

        logger.info(
            "payment_submitted",
            extra={"gateway_payment_id": gateway_payment_id, "attempt": attempt},
        )
