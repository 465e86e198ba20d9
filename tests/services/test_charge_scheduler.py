"""
ChargeScheduler tests.

Tests cover:
- Happy path: payment CREATED with attempts=1 and a gateway id
- Preconditions: unknown / suspended customer, missing or pending mandate
- Unpaid cap: rejection leaves no payment row and makes no gateway call
- Adjustments submitted with the charge
- Gateway failure (claim released) and timeout (outcome unknown)
- Store failure after the gateway accepted the charge
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from debit_kernel.db.engine import transaction
from debit_kernel.exceptions import (
    CustomerInactiveError,
    CustomerNotFoundError,
    GatewayRequestError,
    GatewayTimeoutError,
    InvalidPaymentTransitionError,
    NegativeFinalAmountError,
    NoActiveMandateError,
    ReconciliationRiskError,
    UnpaidLimitExceededError,
    ValidationError,
)
from debit_kernel.models import Adjustment, CustomerStatus, MandateStatus, Payment, PaymentStatus
from debit_kernel.services.event_log import EventLog


def _payment_ids(session_factory, customer_id):
    with transaction(session_factory) as session:
        return list(
            session.execute(
                select(Payment.id).where(Payment.customer_id == customer_id)
            ).scalars()
        )


class TestChargeHappyPath:
    def test_charge_creates_submitted_payment(
        self, charge_scheduler, customer_id, load_payment, gateway
    ):
        payment_id = charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        payment = load_payment(payment_id)
        assert payment.status == PaymentStatus.CREATED.value
        assert payment.attempts == 1
        assert payment.gateway_payment_id == "PM1001"
        assert payment.original_amount_cents == 1500
        assert payment.final_amount_cents == 1500
        assert payment.currency == "EUR"
        assert payment.last_attempt_at is not None

    def test_gateway_request_carries_key_and_metadata(
        self, charge_scheduler, customer_id, gateway
    ):
        payment_id = charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        (call,) = gateway.calls_for("create_payment")
        assert call.idempotency_key == f"{payment_id}:1"
        assert call.args["amount_cents"] == 1500
        assert call.args["currency"] == "EUR"
        assert call.args["description"] == "Payment for Service svc-1"
        assert call.args["metadata"] == {"payment_id": str(payment_id)}
        assert call.args["mandate_ref"].startswith("MD")

    def test_events_recorded_in_order(self, charge_scheduler, customer_id, events_for):
        payment_id = charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        types = [e.event_type for e in events_for(payment_id)]
        assert set(types) == {"scheduled", "created"}
        created = next(e for e in events_for(payment_id) if e.event_type == "created")
        assert created.raw_payload["gateway_payment_id"] == "PM1001"
        assert created.raw_payload["attempt"] == 1

    def test_string_customer_id_accepted(self, charge_scheduler, customer_id, load_payment):
        payment_id = charge_scheduler.charge_user(str(customer_id), "svc-1", 900)
        assert load_payment(payment_id).customer_id == customer_id


class TestChargePreconditions:
    def test_unknown_customer(self, charge_scheduler, seeded_settings, gateway):
        with pytest.raises(CustomerNotFoundError):
            charge_scheduler.charge_user(uuid4(), "svc-1", 1500)
        assert gateway.calls == []

    def test_suspended_customer(self, charge_scheduler, make_customer, seeded_settings, count_rows):
        cid = make_customer(status=CustomerStatus.SUSPENDED.value)
        with pytest.raises(CustomerInactiveError) as exc_info:
            charge_scheduler.charge_user(cid, "svc-1", 1500)
        assert exc_info.value.status == "suspended"
        assert count_rows(Payment) == 0

    def test_no_mandate(self, charge_scheduler, make_customer, seeded_settings, count_rows):
        cid = make_customer(mandate_status=None)
        with pytest.raises(NoActiveMandateError):
            charge_scheduler.charge_user(cid, "svc-1", 1500)
        assert count_rows(Payment) == 0

    def test_pending_mandate_is_not_active(self, charge_scheduler, make_customer, seeded_settings):
        cid = make_customer(mandate_status=MandateStatus.PENDING.value)
        with pytest.raises(NoActiveMandateError):
            charge_scheduler.charge_user(cid, "svc-1", 1500)

    @pytest.mark.parametrize("amount", [0, -5, 10.5, "1500", True, None])
    def test_invalid_amount(self, charge_scheduler, customer_id, amount, count_rows):
        with pytest.raises(ValidationError):
            charge_scheduler.charge_user(customer_id, "svc-1", amount)
        assert count_rows(Payment) == 0

    def test_missing_service_id(self, charge_scheduler, customer_id):
        with pytest.raises(ValidationError) as exc_info:
            charge_scheduler.charge_user(customer_id, "  ", 1500)
        assert exc_info.value.field == "service_id"

    def test_malformed_customer_id(self, charge_scheduler, seeded_settings):
        with pytest.raises(ValidationError):
            charge_scheduler.charge_user("not-a-uuid", "svc-1", 1500)


class TestUnpaidCap:
    def test_rejects_at_cap_without_side_effects(
        self, charge_scheduler, customer_id, make_payment, count_rows, gateway, captured_logs
    ):
        for _ in range(3):
            make_payment(customer_id, PaymentStatus.FAILED, attempts=1)

        with pytest.raises(UnpaidLimitExceededError) as exc_info:
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        assert exc_info.value.failed_count == 3
        assert exc_info.value.max_unpaid_allowed == 3
        assert count_rows(Payment, customer_id=customer_id) == 3
        assert gateway.calls == []
        assert any(r["message"] == "charge_rejected_unpaid_limit" for r in captured_logs())

    def test_allows_below_cap(self, charge_scheduler, customer_id, make_payment):
        for _ in range(2):
            make_payment(customer_id, PaymentStatus.FAILED, attempts=1)
        charge_scheduler.charge_user(customer_id, "svc-1", 1500)

    def test_only_failed_payments_count(self, charge_scheduler, customer_id, make_payment):
        for status in (PaymentStatus.CONFIRMED, PaymentStatus.CHARGEBACK, PaymentStatus.CANCELLED):
            make_payment(customer_id, status, attempts=1, gateway_payment_id=f"PM{uuid4().hex[:6]}")
        charge_scheduler.charge_user(customer_id, "svc-1", 1500)

    def test_cap_of_zero_blocks_everything(self, charge_scheduler, customer_id, put_settings):
        put_settings(max_unpaid_allowed=0)
        with pytest.raises(UnpaidLimitExceededError):
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)


class TestStagedAdjustments:
    def test_adjustments_applied_before_submission(
        self, charge_scheduler, customer_id, load_payment, count_rows, gateway
    ):
        payment_id = charge_scheduler.charge_user(
            customer_id,
            "svc-1",
            1000,
            adjustments=[
                {"type": "increase", "amount_cents": 300, "reason": "setup fee", "created_by": "ops"},
                {"type": "decrease", "amount_cents": 100, "reason": "promo", "created_by": "ops"},
            ],
        )

        payment = load_payment(payment_id)
        assert payment.original_amount_cents == 1000
        assert payment.final_amount_cents == 1200
        assert count_rows(Adjustment, payment_id=payment_id) == 2
        assert gateway.calls_for("create_payment")[0].args["amount_cents"] == 1200

    def test_negative_result_rejects_whole_charge(
        self, charge_scheduler, customer_id, count_rows, gateway
    ):
        with pytest.raises(NegativeFinalAmountError):
            charge_scheduler.charge_user(
                customer_id,
                "svc-1",
                1000,
                adjustments=[
                    {"type": "decrease", "amount_cents": 1001, "reason": "oops", "created_by": "ops"},
                ],
            )
        assert count_rows(Payment) == 0
        assert count_rows(Adjustment) == 0
        assert gateway.calls == []

    def test_invalid_adjustment_rejected_before_anything(self, charge_scheduler, customer_id, count_rows):
        with pytest.raises(ValidationError):
            charge_scheduler.charge_user(
                customer_id,
                "svc-1",
                1000,
                adjustments=[{"type": "bonus", "amount_cents": 5, "reason": "x", "created_by": "ops"}],
            )
        assert count_rows(Payment) == 0


class TestGatewayFailure:
    def test_rejection_returns_payment_to_scheduled(
        self, charge_scheduler, customer_id, gateway, session_factory, load_payment, events_for
    ):
        gateway.fail_next_create()

        with pytest.raises(GatewayRequestError):
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        (payment_id,) = _payment_ids(session_factory, customer_id)
        payment = load_payment(payment_id)
        assert payment.status == PaymentStatus.SCHEDULED.value
        assert payment.attempts == 0
        assert payment.gateway_payment_id is None

        failed = [e for e in events_for(payment_id) if e.event_type == "gateway_creation_failed"]
        assert len(failed) == 1
        assert failed[0].raw_payload["error_code"] == "GATEWAY_REQUEST_FAILED"

    def test_resubmit_after_rejection(
        self, charge_scheduler, customer_id, gateway, session_factory, load_payment
    ):
        gateway.fail_next_create()
        with pytest.raises(GatewayRequestError):
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)
        (payment_id,) = _payment_ids(session_factory, customer_id)

        charge_scheduler.submit(payment_id)

        payment = load_payment(payment_id)
        assert payment.status == PaymentStatus.CREATED.value
        assert payment.attempts == 1
        keys = [c.idempotency_key for c in gateway.calls_for("create_payment")]
        assert keys == [f"{payment_id}:1", f"{payment_id}:1"]

    def test_submit_requires_scheduled(self, charge_scheduler, customer_id):
        payment_id = charge_scheduler.charge_user(customer_id, "svc-1", 1500)
        with pytest.raises(InvalidPaymentTransitionError):
            charge_scheduler.submit(payment_id)


class TestGatewayTimeout:
    def test_timeout_records_unknown_outcome(
        self, charge_scheduler, customer_id, gateway, session_factory, load_payment, events_for
    ):
        gateway.time_out_next_create()

        with pytest.raises(GatewayTimeoutError) as exc_info:
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        (payment_id,) = _payment_ids(session_factory, customer_id)
        assert exc_info.value.payment_id == str(payment_id)
        payment = load_payment(payment_id)
        assert payment.status == PaymentStatus.CREATED.value
        assert payment.attempts == 1
        assert payment.gateway_payment_id is None
        assert "gateway_outcome_unknown" in {e.event_type for e in events_for(payment_id)}

    def test_timed_out_payment_is_not_resubmitted(
        self, charge_scheduler, customer_id, gateway, session_factory
    ):
        gateway.time_out_next_create()
        with pytest.raises(GatewayTimeoutError):
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)
        (payment_id,) = _payment_ids(session_factory, customer_id)

        with pytest.raises(InvalidPaymentTransitionError):
            charge_scheduler.submit(payment_id)
        assert len(gateway.calls_for("create_payment")) == 1


class TestStoreFailureAfterGatewaySuccess:
    def test_reconciliation_risk_raised_and_recorded(
        self, charge_scheduler, customer_id, session_factory, monkeypatch, events_for, load_payment
    ):
        original_record = EventLog.record

        def failing_record(self, payment_id, event_type, payload, idempotency_key=None):
            if event_type == "created":
                raise OperationalError("UPDATE payments", {}, Exception("disk I/O error"))
            return original_record(self, payment_id, event_type, payload, idempotency_key)

        monkeypatch.setattr(EventLog, "record", failing_record)

        with pytest.raises(ReconciliationRiskError) as exc_info:
            charge_scheduler.charge_user(customer_id, "svc-1", 1500)

        assert exc_info.value.gateway_payment_id == "PM1001"
        (payment_id,) = _payment_ids(session_factory, customer_id)
        assert load_payment(payment_id).status == PaymentStatus.SUBMITTING.value
        assert "db_update_after_gc_success_failed" in {
            e.event_type for e in events_for(payment_id)
        }
