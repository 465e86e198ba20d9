"""
RetryDaemon -- periodic resubmission of failed payments.

Responsibility:
    Selects FAILED payments that are under the retry ceiling and out of the
    cooldown window, and resubmits each to the gateway with its current
    final amount.

Architecture position:
    Kernel > Services -- imperative shell.  Invoked by the retry-sweep
    endpoint or the ``scripts/run_retry_sweep.py`` CLI on a schedule.

Invariants enforced:
    - Retry bound: a payment with attempts >= max_retries is never selected.
    - Cooldown: a payment attempted within retry_gap_days is never selected.
    - Every attempt, successful, failed or of unknown outcome, increments
      attempts and sets last_attempt_at, so the bound and the cooldown
      apply to failed retries as well.
    - Each payment is claimed FAILED -> RETRYING under its row lock with
      the eligibility predicate re-checked, so two concurrent sweeps never
      resubmit the same payment, and a status change made by a webhook
      after selection is never overwritten.
    - Per-payment isolation: one payment's failure never aborts the sweep.

Failure modes:
    - StoreError while loading settings or selecting candidates aborts the
      sweep (nothing was attempted yet).
    - Per-payment errors are recorded as events and counted.

Audit relevance:
    Events: retry_scheduled, retry_failed_gateway_error,
    retry_outcome_unknown, retry_rejected_no_active_mandate.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from debit_kernel.domain.clock import Clock
from debit_kernel.domain.dtos import SweepResult
from debit_kernel.domain.gateway import GatewayClient
from debit_kernel.domain.settings import Settings
from debit_kernel.exceptions import (
    DebitKernelError,
    GatewayTimeoutError,
    ReconciliationRiskError,
    StoreError,
)
from debit_kernel.logging_config import LogContext, get_logger
from debit_kernel.models.payment import PaymentStatus
from debit_kernel.selectors.payment_selector import PaymentSelector, is_retry_eligible
from debit_kernel.services.base import BaseService, lock_payment
from debit_kernel.services.event_log import EventLog
from debit_kernel.utils.idempotency import charge_idempotency_key

logger = get_logger("services.retry_daemon")


class RetryOutcome(str, Enum):
    RETRIED = "retried"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNKNOWN = "unknown"


class RetryDaemon(BaseService):
    """Resubmits eligible FAILED payments.

    Contract:
        sweep() attempts every eligible payment once and returns counts.

    Non-goals:
        - Does NOT move exhausted payments to a terminal status; they stay
          FAILED and PaymentSelector.exhausted() lists them.
        - Does NOT retry SCHEDULED payments whose first submission failed.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: GatewayClient,
        clock: Clock,
        batch_size: int | None = None,
    ):
        super().__init__(session_factory, clock)
        self._gateway = gateway
        self._batch_size = batch_size

    def sweep(self) -> SweepResult:
        """Run one retry pass over all eligible payments."""
        with LogContext.bind(operation="retry_sweep"):
            settings = self._load_settings()
            now = self._clock.now_utc()

            with self._transaction("select_retry_candidates") as session:
                candidate_ids = PaymentSelector(session).retry_candidate_ids(
                    now,
                    settings.max_retries,
                    settings.retry_gap_days,
                    limit=self._batch_size,
                )
            logger.info("retry_sweep_started", extra={"candidates": len(candidate_ids)})

            counts = {outcome: 0 for outcome in RetryOutcome}
            retried: list[UUID] = []
            for payment_id in candidate_ids:
                with LogContext.bind(payment_id=str(payment_id)):
                    try:
                        outcome = self._retry_one(payment_id, settings)
                    except DebitKernelError:
                        logger.exception("retry_payment_error")
                        outcome = RetryOutcome.FAILED
                counts[outcome] += 1
                if outcome == RetryOutcome.RETRIED:
                    retried.append(payment_id)

            result = SweepResult(
                selected=len(candidate_ids),
                retried=counts[RetryOutcome.RETRIED],
                skipped=counts[RetryOutcome.SKIPPED],
                failed=counts[RetryOutcome.FAILED],
                unknown=counts[RetryOutcome.UNKNOWN],
                payment_ids=tuple(retried),
            )
            logger.info(
                "retry_sweep_completed",
                extra={
                    "selected": result.selected,
                    "retried": result.retried,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "unknown": result.unknown,
                },
            )
            return result

    def _retry_one(self, payment_id: UUID, settings: Settings) -> RetryOutcome:
        now = self._clock.now_utc()

        with self._transaction("claim_retry") as session:
            payment = lock_payment(session, payment_id)
            if not is_retry_eligible(
                payment, now, settings.max_retries, settings.retry_gap_days
            ):
                logger.info("retry_claim_lost", extra={"status": payment.status})
                return RetryOutcome.SKIPPED

            selector = PaymentSelector(session)
            mandate_ref = selector.active_mandate_ref(payment.customer_id)
            if mandate_ref is None:
                logger.warning("retry_rejected_no_active_mandate")
                EventLog(session, self._clock).record(
                    payment_id,
                    "retry_rejected_no_active_mandate",
                    {"customer_id": str(payment.customer_id)},
                )
                return RetryOutcome.SKIPPED

            payment.status = PaymentStatus.RETRYING.value
            attempt = payment.attempts + 1
            amount_cents = payment.final_amount_cents
            currency = payment.currency
            service_id = payment.service_id

        idempotency_key = charge_idempotency_key(payment_id, attempt)
        try:
            gateway_payment_id = self._gateway.create_payment(
                mandate_ref=mandate_ref,
                amount_cents=amount_cents,
                currency=currency,
                description=f"Retry for Service {service_id}",
                metadata={
                    "payment_id": str(payment_id),
                    "original_payment_id": str(payment_id),
                    "retry_attempt": str(attempt),
                },
                idempotency_key=idempotency_key,
            )
        except GatewayTimeoutError:
            self._finish(
                payment_id,
                attempt,
                PaymentStatus.CREATED,
                "retry_outcome_unknown",
                {"attempt": attempt, "idempotency_key": idempotency_key},
            )
            return RetryOutcome.UNKNOWN
        except Exception as exc:
            logger.error("retry_failed_gateway_error", extra={"attempt": attempt, "error": str(exc)})
            self._finish(
                payment_id,
                attempt,
                PaymentStatus.FAILED,
                "retry_failed_gateway_error",
                {
                    "attempt": attempt,
                    "error": str(exc),
                    "error_code": getattr(exc, "code", type(exc).__name__),
                },
            )
            return RetryOutcome.FAILED

        try:
            self._finish(
                payment_id,
                attempt,
                PaymentStatus.CREATED,
                "retry_scheduled",
                {
                    "attempt": attempt,
                    "gateway_payment_id": gateway_payment_id,
                    "amount_cents": amount_cents,
                },
                gateway_payment_id=gateway_payment_id,
            )
        except StoreError as exc:
            self._record_event_after_failure(
                payment_id,
                "db_update_after_gc_success_failed",
                {"gateway_payment_id": gateway_payment_id, "error": exc.reason},
            )
            raise ReconciliationRiskError(
                str(payment_id), gateway_payment_id, exc.reason
            ) from exc
        return RetryOutcome.RETRIED

    def _finish(
        self,
        payment_id: UUID,
        attempt: int,
        status: PaymentStatus,
        event_type: str,
        payload: dict,
        gateway_payment_id: str | None = None,
    ) -> None:
        """Release the RETRYING claim and record the attempt."""
        try:
            with self._transaction("finish_retry") as session:
                payment = lock_payment(session, payment_id)
                payment.status = status.value
                payment.attempts = attempt
                payment.last_attempt_at = self._clock.now_utc()
                if gateway_payment_id is not None:
                    payment.gateway_payment_id = gateway_payment_id
                elif status == PaymentStatus.CREATED:
                    # Unknown outcome: the old id belongs to the failed
                    # charge; the webhook supplies the new one.
                    payment.gateway_payment_id = None
                EventLog(session, self._clock).record(payment_id, event_type, payload)
        except StoreError:
            logger.critical(
                "retry_outcome_record_failed",
                extra={"attempt": attempt, "event_type": event_type},
            )
            raise
        logger.info(event_type, extra={"attempt": attempt, "status": status.value})
