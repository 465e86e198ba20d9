"""
RetryDaemon tests.

Tests cover:
- Eligibility: FAILED, under max_retries, outside the cooldown
- Successful retry: new gateway id, attempt key, retry metadata
- Failed retry: attempts still advance, payment stays FAILED
- Unknown outcome: payment moves to CREATED without a gateway id
- Missing mandate: skipped with an event
- Batch size and exhausted payments
"""

from datetime import timedelta

import pytest

from debit_kernel.db.engine import transaction
from debit_kernel.exceptions import GatewayRequestError
from debit_kernel.models import MandateStatus, PaymentStatus
from debit_kernel.selectors.payment_selector import PaymentSelector
from debit_kernel.services import RetryDaemon
from debit_kernel.utils.idempotency import charge_idempotency_key


@pytest.fixture
def failed_payment(customer_id, make_payment, clock):
    """FAILED after one attempt, three days ago (cooldown is two days)."""
    return make_payment(
        customer_id,
        status=PaymentStatus.FAILED,
        amount_cents=1200,
        attempts=1,
        last_attempt_at=clock.now_utc() - timedelta(days=3),
        gateway_payment_id="PM700",
        service_id="svc-pro",
    )


class TestEligibility:
    def test_nothing_to_do(self, retry_daemon, gateway):
        result = retry_daemon.sweep()
        assert result.selected == 0
        assert result.retries_initiated == 0
        assert gateway.calls == []

    def test_within_cooldown_not_selected(self, retry_daemon, customer_id, make_payment, clock, gateway):
        make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=1,
            last_attempt_at=clock.now_utc() - timedelta(days=1),
        )
        assert retry_daemon.sweep().selected == 0
        assert gateway.calls == []

    def test_cooldown_boundary_is_exclusive(self, retry_daemon, customer_id, make_payment, clock):
        make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=1,
            last_attempt_at=clock.now_utc() - timedelta(days=2),
        )
        assert retry_daemon.sweep().selected == 0

    def test_exhausted_not_selected(self, retry_daemon, customer_id, make_payment, clock, gateway):
        make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=3,
            last_attempt_at=clock.now_utc() - timedelta(days=10),
        )
        assert retry_daemon.sweep().selected == 0
        assert gateway.calls == []

    def test_never_attempted_failed_payment_selected(self, retry_daemon, customer_id, make_payment):
        make_payment(customer_id, status=PaymentStatus.FAILED, attempts=0)
        assert retry_daemon.sweep().retried == 1

    @pytest.mark.parametrize(
        "status",
        [PaymentStatus.SCHEDULED, PaymentStatus.CREATED, PaymentStatus.CONFIRMED, PaymentStatus.CHARGEBACK],
    )
    def test_other_statuses_ignored(self, retry_daemon, customer_id, make_payment, status):
        make_payment(customer_id, status=status, attempts=1)
        assert retry_daemon.sweep().selected == 0

    def test_cooldown_elapses(self, retry_daemon, customer_id, make_payment, clock):
        make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=1,
            last_attempt_at=clock.now_utc() - timedelta(days=1),
        )
        assert retry_daemon.sweep().selected == 0
        clock.advance_days(2)
        assert retry_daemon.sweep().retried == 1


class TestSuccessfulRetry:
    def test_resubmits_with_next_attempt(self, retry_daemon, failed_payment, gateway, load_payment, clock):
        result = retry_daemon.sweep()

        assert result.selected == 1
        assert result.retries_initiated == 1
        assert result.payment_ids == (failed_payment,)

        (call,) = gateway.calls_for("create_payment")
        assert call.idempotency_key == charge_idempotency_key(failed_payment, 2)
        assert call.args["amount_cents"] == 1200
        assert call.args["description"] == "Retry for Service svc-pro"
        assert call.args["metadata"] == {
            "payment_id": str(failed_payment),
            "original_payment_id": str(failed_payment),
            "retry_attempt": "2",
        }

        payment = load_payment(failed_payment)
        assert payment.status == PaymentStatus.CREATED.value
        assert payment.attempts == 2
        assert payment.gateway_payment_id == call.resource_id
        assert payment.last_attempt_at == clock.now_utc()

    def test_retry_event_recorded(self, retry_daemon, failed_payment, events_for):
        retry_daemon.sweep()
        (scheduled,) = [e for e in events_for(failed_payment) if e.event_type == "retry_scheduled"]
        assert scheduled.raw_payload["attempt"] == 2
        assert scheduled.raw_payload["amount_cents"] == 1200

    def test_second_sweep_does_nothing(self, retry_daemon, failed_payment, gateway):
        retry_daemon.sweep()
        result = retry_daemon.sweep()
        assert result.selected == 0
        assert len(gateway.calls_for("create_payment")) == 1

    def test_uses_latest_active_mandate(self, retry_daemon, failed_payment, gateway, customer_id, session_factory):
        with transaction(session_factory) as session:
            mandate_ref = PaymentSelector(session).active_mandate_ref(customer_id)
        retry_daemon.sweep()
        assert gateway.calls[0].args["mandate_ref"] == mandate_ref


class TestFailedRetry:
    def test_gateway_rejection_counts_attempt(
        self, retry_daemon, failed_payment, gateway, load_payment, events_for, clock
    ):
        gateway.fail_next_create()

        result = retry_daemon.sweep()

        assert result.failed == 1
        assert result.retries_initiated == 0
        payment = load_payment(failed_payment)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.attempts == 2
        assert payment.last_attempt_at == clock.now_utc()
        assert payment.gateway_payment_id == "PM700"

        (failed,) = [
            e for e in events_for(failed_payment) if e.event_type == "retry_failed_gateway_error"
        ]
        assert failed.raw_payload["error_code"] == GatewayRequestError.code

    def test_failed_retry_enters_cooldown(self, retry_daemon, failed_payment, gateway, clock):
        gateway.fail_next_create()
        retry_daemon.sweep()

        assert retry_daemon.sweep().selected == 0
        clock.advance_days(3)
        assert retry_daemon.sweep().retried == 1

    def test_retries_stop_at_ceiling(self, retry_daemon, failed_payment, gateway, clock, load_payment):
        for _ in range(5):
            gateway.fail_next_create()
            retry_daemon.sweep()
            clock.advance_days(3)

        assert len(gateway.calls_for("create_payment")) == 2
        payment = load_payment(failed_payment)
        assert payment.attempts == 3
        assert payment.status == PaymentStatus.FAILED.value

    def test_one_failure_does_not_stop_the_sweep(
        self, retry_daemon, customer_id, make_payment, gateway
    ):
        make_payment(customer_id, status=PaymentStatus.FAILED, attempts=0)
        make_payment(customer_id, status=PaymentStatus.FAILED, attempts=0)
        gateway.fail_next_create()

        result = retry_daemon.sweep()

        assert result.selected == 2
        assert result.failed == 1
        assert result.retried == 1


class TestUnknownOutcome:
    def test_timeout_moves_to_created_without_gateway_id(
        self, retry_daemon, failed_payment, gateway, load_payment, events_for
    ):
        gateway.time_out_next_create()

        result = retry_daemon.sweep()

        assert result.unknown == 1
        assert result.retries_initiated == 0
        payment = load_payment(failed_payment)
        assert payment.status == PaymentStatus.CREATED.value
        assert payment.attempts == 2
        assert payment.gateway_payment_id is None
        assert "retry_outcome_unknown" in {e.event_type for e in events_for(failed_payment)}

    def test_timeout_resolved_by_webhook(
        self, retry_daemon, failed_payment, gateway, deliver, event, load_payment
    ):
        gateway.time_out_next_create(applied=True)
        retry_daemon.sweep()
        (call,) = gateway.calls_for("create_payment")

        deliver(event("EV1", "confirmed", call.resource_id, payment_reference=str(failed_payment)))

        payment = load_payment(failed_payment)
        assert payment.status == PaymentStatus.CONFIRMED.value
        assert payment.gateway_payment_id == call.resource_id


class TestSkipped:
    def test_no_active_mandate(self, retry_daemon, make_customer, make_payment, gateway, events_for, seeded_settings):
        customer = make_customer(mandate_status=MandateStatus.CANCELLED.value)
        payment_id = make_payment(customer, status=PaymentStatus.FAILED, attempts=1)

        result = retry_daemon.sweep()

        assert result.skipped == 1
        assert gateway.calls == []
        events = [e.event_type for e in events_for(payment_id)]
        assert events == ["retry_rejected_no_active_mandate"]


class TestBatchSize:
    def test_batch_size_limits_selection(
        self, session_factory, gateway, clock, seeded_settings, customer_id, make_payment
    ):
        for _ in range(3):
            make_payment(customer_id, status=PaymentStatus.FAILED, attempts=0)

        daemon = RetryDaemon(session_factory, gateway, clock, batch_size=2)
        first = daemon.sweep()
        second = daemon.sweep()

        assert first.selected == 2
        assert second.selected == 1

    def test_oldest_attempt_first(
        self, session_factory, gateway, clock, seeded_settings, customer_id, make_payment
    ):
        recent = make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=1,
            last_attempt_at=clock.now_utc() - timedelta(days=3),
        )
        older = make_payment(
            customer_id,
            status=PaymentStatus.FAILED,
            attempts=1,
            last_attempt_at=clock.now_utc() - timedelta(days=9),
        )

        result = RetryDaemon(session_factory, gateway, clock, batch_size=1).sweep()

        assert result.payment_ids == (older,)
        assert recent not in result.payment_ids


class TestExhausted:
    def test_exhausted_payments_listed(self, customer_id, make_payment, session_factory, clock):
        exhausted = make_payment(customer_id, status=PaymentStatus.FAILED, attempts=3)
        make_payment(customer_id, status=PaymentStatus.FAILED, attempts=1)

        with transaction(session_factory) as session:
            listed = PaymentSelector(session).exhausted(max_retries=3)

        assert [p.payment_id for p in listed] == [exhausted]
