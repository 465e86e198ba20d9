"""
WebhookReconciler -- applies gateway notifications to local payments.

Responsibility:
    Authenticates a webhook delivery, parses it into payment events, and
    applies each event to its payment exactly once, then runs the side
    effects of the new status.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the webhook endpoint.

Invariants enforced:
    - At-least-once delivery is absorbed: an event is applied only if no
      event log entry carries its idempotency key
      ("webhook:<action>:<event_id>").  The key is UNIQUE, so two deliveries
      racing past the check cannot both commit; the loser counts as a
      duplicate.
    - Each event is its own transaction: dedup check, payment row lock,
      status update and event log entry commit together or not at all.
    - CHARGEBACK is absorbing; events it refuses are recorded as
      ``webhook_transition_rejected`` under their key, so they are refused
      once.
    - A claimed payment (SUBMITTING, RETRYING) is not moved and the event is
      deferred: nothing is recorded under its key, and the endpoint answers
      with a retryable status so the gateway redelivers after the claim is
      released.
    - Side effects run only when the status actually changed.

Failure modes:
    - InvalidWebhookSignatureError: nothing processed.
    - MalformedWebhookError: nothing processed.
    - StoreError: events before the failing one stay applied; the gateway
      redelivers and those are then skipped as duplicates.
    - Invoicing failures never propagate; they are stored on the payment.

Audit relevance:
    Events: webhook_<action>, webhook_transition_rejected,
    customer_review_required, invoice_issued, invoice_failed.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from debit_kernel.db.engine import transaction
from debit_kernel.domain.clock import Clock
from debit_kernel.domain.dtos import WebhookResult
from debit_kernel.domain.gateway import (
    GatewayClient,
    GatewayEvent,
    InvoiceCustomer,
    InvoiceLine,
    InvoicingClient,
)
from debit_kernel.exceptions import InvalidWebhookSignatureError, StoreError
from debit_kernel.logging_config import LogContext, get_logger
from debit_kernel.models.customer import Customer
from debit_kernel.models.payment import CLAIM_STATUSES, Payment, PaymentStatus
from debit_kernel.selectors.payment_selector import PaymentSelector
from debit_kernel.services.base import BaseService
from debit_kernel.services.event_log import EventLog
from debit_kernel.utils.hashing import hash_payload
from debit_kernel.utils.idempotency import webhook_idempotency_key

logger = get_logger("services.webhook_reconciler")

# Statuses that need an operator to look at the customer
REVIEW_STATUSES = frozenset({PaymentStatus.CHARGEBACK, PaymentStatus.CANCELLED})


class EventOutcome(str, Enum):
    """What happened to one parsed event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    ORPHAN = "orphan"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class WebhookReconciler(BaseService):
    """Reconciles gateway notifications with the payment store.

    Contract:
        ingest() authenticates and applies a delivery and returns counts.
        Replaying the same delivery changes nothing and applies zero events.

    Non-goals:
        - Does NOT retry failed payments (RetryDaemon does).
        - Does NOT create payments for unknown gateway ids.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: GatewayClient,
        clock: Clock,
        invoicing: InvoicingClient | None = None,
    ):
        super().__init__(session_factory, clock)
        self._gateway = gateway
        self._invoicing = invoicing

    def ingest(self, raw_payload: bytes | str, signature: str | None) -> WebhookResult:
        """Verify, parse and apply one webhook delivery.

        Raises:
            InvalidWebhookSignatureError, MalformedWebhookError, StoreError.
        """
        payload = raw_payload.encode("utf-8") if isinstance(raw_payload, str) else raw_payload

        with LogContext.bind(operation="webhook_ingest"):
            if not self._gateway.validate_webhook(payload, signature):
                logger.warning("webhook_signature_invalid")
                raise InvalidWebhookSignatureError()

            events = self._gateway.parse_webhook(payload)
            logger.info("webhook_received", extra={"event_count": len(events)})

            counts = {outcome: 0 for outcome in EventOutcome}
            for event in events:
                with LogContext.bind(event_id=event.event_id):
                    counts[self._process(event)] += 1

            result = WebhookResult(
                events_seen=len(events),
                events_applied=counts[EventOutcome.APPLIED],
                duplicates=counts[EventOutcome.DUPLICATE],
                orphans=counts[EventOutcome.ORPHAN],
                rejected=counts[EventOutcome.REJECTED],
                deferred=counts[EventOutcome.DEFERRED],
            )
            logger.info(
                "webhook_processed",
                extra={
                    "events_seen": result.events_seen,
                    "events_applied": result.events_applied,
                    "duplicates": result.duplicates,
                    "orphans": result.orphans,
                    "rejected": result.rejected,
                    "deferred": result.deferred,
                },
            )
            return result

    def _process(self, event: GatewayEvent) -> EventOutcome:
        key = webhook_idempotency_key(event.action, event.event_id)
        target = PaymentStatus(event.new_status)
        changed_payment: UUID | None = None

        try:
            with transaction(self._session_factory) as session:
                if PaymentSelector(session).has_event(key):
                    logger.info("webhook_event_duplicate", extra={"action": event.action})
                    return EventOutcome.DUPLICATE

                payment = self._find_payment(session, event)
                if payment is None:
                    logger.warning(
                        "webhook_payment_not_found",
                        extra={
                            "action": event.action,
                            "gateway_payment_id": event.gateway_payment_id,
                        },
                    )
                    return EventOutcome.ORPHAN

                if payment.is_claimed:
                    logger.warning(
                        "webhook_event_deferred",
                        extra={"action": event.action, "status": payment.status},
                    )
                    return EventOutcome.DEFERRED

                event_log = EventLog(session, self._clock)
                previous = payment.status
                if not payment.can_apply_webhook_status(target):
                    logger.warning(
                        "webhook_transition_rejected",
                        extra={"from_status": previous, "to_status": target.value},
                    )
                    event_log.record(
                        payment.id,
                        "webhook_transition_rejected",
                        {
                            "id": event.event_id,
                            "action": event.action,
                            "current_status": previous,
                            "new_status": target.value,
                            "raw_payload": event.raw,
                        },
                        idempotency_key=key,
                    )
                    return EventOutcome.REJECTED

                if payment.gateway_payment_id is None:
                    payment.gateway_payment_id = event.gateway_payment_id
                payment.status = target.value
                event_log.record(
                    payment.id,
                    f"webhook_{event.action}",
                    {
                        "id": event.event_id,
                        "new_status": target.value,
                        "previous_status": previous,
                        "raw_payload": event.raw,
                        "payload_hash": hash_payload(event.raw),
                    },
                    idempotency_key=key,
                )
                if previous != target.value and target in REVIEW_STATUSES:
                    logger.warning(
                        "customer_review_required",
                        extra={"customer_id": str(payment.customer_id), "status": target.value},
                    )
                    event_log.record(
                        payment.id,
                        "customer_review_required",
                        {
                            "customer_id": str(payment.customer_id),
                            "status": target.value,
                            "event_id": event.event_id,
                        },
                    )
                if previous != target.value:
                    changed_payment = payment.id
        except IntegrityError:
            logger.info("webhook_event_duplicate_race", extra={"action": event.action})
            return EventOutcome.DUPLICATE
        except SQLAlchemyError as exc:
            raise StoreError("apply_webhook_event", str(exc)) from exc

        logger.info(
            "webhook_event_applied",
            extra={"action": event.action, "new_status": target.value},
        )
        if changed_payment is not None and target == PaymentStatus.CONFIRMED:
            self._issue_invoice(changed_payment)
        return EventOutcome.APPLIED

    def _find_payment(self, session: Session, event: GatewayEvent) -> Payment | None:
        """Locate and lock the payment an event is about.

        Primary match is the gateway payment id.  A payment whose submission
        timed out has no gateway id yet, and a payment being retried still
        holds the previous charge's id; both are matched by the local payment
        id the gateway echoes back in the creation metadata.
        """
        payment = session.execute(
            select(Payment)
            .where(Payment.gateway_payment_id == event.gateway_payment_id)
            .with_for_update()
        ).scalar_one_or_none()
        if payment is not None or not event.payment_reference:
            return payment

        try:
            reference = UUID(event.payment_reference)
        except ValueError:
            return None
        return session.execute(
            select(Payment)
            .where(
                Payment.id == reference,
                or_(
                    Payment.gateway_payment_id.is_(None),
                    Payment.status.in_([s.value for s in CLAIM_STATUSES]),
                ),
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _issue_invoice(self, payment_id: UUID) -> None:
        """Issue the invoice-receipt for a newly confirmed payment.

        Invoicing failures are recorded on the payment and in the event log;
        they never undo or fail the reconciliation.
        """
        if self._invoicing is None:
            return

        with self._transaction("load_invoice_context") as session:
            payment = session.get(Payment, payment_id)
            customer = session.get(Customer, payment.customer_id)
            invoice_customer = InvoiceCustomer(
                name=customer.name,
                email=customer.email,
                vat_number=customer.vat_number,
            )
            line = InvoiceLine(
                description=f"Service {payment.service_id}",
                unit_price_cents=payment.final_amount_cents,
            )
            reference = payment.gateway_payment_id or str(payment.id)

        try:
            receipt = self._invoicing.issue_receipt(invoice_customer, [line], reference)
        except Exception as exc:
            logger.warning("invoice_failed", exc_info=True, extra={"reference": reference})
            with self._transaction("record_invoice_failure") as session:
                payment = session.get(Payment, payment_id)
                payment.invoice_error = str(exc)
                EventLog(session, self._clock).record(
                    payment_id, "invoice_failed", {"reference": reference, "error": str(exc)}
                )
            return

        with self._transaction("record_invoice") as session:
            payment = session.get(Payment, payment_id)
            payment.invoice_document_id = receipt.document_id
            payment.invoice_pdf_url = receipt.pdf_url
            payment.invoice_error = None
            EventLog(session, self._clock).record(
                payment_id,
                "invoice_issued",
                {"document_id": receipt.document_id, "pdf_url": receipt.pdf_url},
            )
        logger.info("invoice_issued", extra={"document_id": receipt.document_id})
