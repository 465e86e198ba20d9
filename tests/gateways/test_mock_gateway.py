"""MockGateway and MockInvoicing behaviour the service tests rely on."""

import pytest

from debit_gateways.mock import MockGateway, MockInvoicing, build_delivery, payment_event
from debit_kernel.domain.gateway import InvoiceCustomer, InvoiceLine
from debit_kernel.exceptions import GatewayRequestError, GatewayTimeoutError, InvoicingError


def _create(gateway, key="k:1", amount=100):
    return gateway.create_payment("MD1", amount, "EUR", "desc", {"payment_id": "p"}, key)


class TestMockGateway:
    def test_ids_are_sequential(self):
        gateway = MockGateway()
        assert [_create(gateway, f"k:{i}") for i in range(1, 4)] == ["PM1001", "PM1002", "PM1003"]
        assert gateway.refund_payment("PM1001", 50, "r", "refund:1") == "RF501"

    def test_same_key_same_id(self):
        gateway = MockGateway()
        assert _create(gateway, "k:1") == _create(gateway, "k:1")
        assert len(gateway.payments) == 1
        assert len(gateway.calls) == 2

    def test_scripted_failure_consumed_once(self):
        gateway = MockGateway()
        gateway.fail_next_create()
        with pytest.raises(GatewayRequestError):
            _create(gateway, "k:1")
        assert _create(gateway, "k:2") == "PM1001"

    def test_failed_key_can_be_retried(self):
        gateway = MockGateway()
        gateway.fail_next_create()
        with pytest.raises(GatewayRequestError):
            _create(gateway, "k:1")
        assert _create(gateway, "k:1") == "PM1001"

    def test_applied_timeout_keeps_payment(self):
        gateway = MockGateway()
        gateway.time_out_next_create(applied=True)
        with pytest.raises(GatewayTimeoutError):
            _create(gateway, "k:1")
        assert list(gateway.payments) == ["PM1001"]
        assert _create(gateway, "k:1") == "PM1001"

    def test_lost_timeout_creates_nothing(self):
        gateway = MockGateway()
        gateway.time_out_next_create(applied=False)
        with pytest.raises(GatewayTimeoutError):
            _create(gateway, "k:1")
        assert gateway.payments == {}

    def test_refund_scripting(self):
        gateway = MockGateway()
        gateway.fail_next_refund()
        with pytest.raises(GatewayRequestError):
            gateway.refund_payment("PM1", 10, "r", "refund:1")
        gateway.time_out_next_refund()
        with pytest.raises(GatewayTimeoutError):
            gateway.refund_payment("PM1", 10, "r", "refund:2")
        assert list(gateway.refunds) == ["RF501"]

    def test_webhooks_without_secret_always_valid(self):
        assert MockGateway().validate_webhook(b"{}", None)

    def test_webhooks_with_secret_checked(self):
        gateway = MockGateway(webhook_secret="s")
        body = build_delivery([payment_event("EV1", "confirmed", "PM1")])
        assert gateway.validate_webhook(body, gateway.sign(body))
        assert not gateway.validate_webhook(body, None)
        assert gateway.parse_webhook(body)[0].event_id == "EV1"


class TestMockInvoicing:
    def test_receipts_recorded(self):
        invoicing = MockInvoicing(base_pdf_url="https://pdf.example/")
        receipt = invoicing.issue_receipt(
            InvoiceCustomer(name="A", email="a@example.com"),
            [InvoiceLine("Service s", 100)],
            "PM1",
        )
        assert receipt.document_id == "1"
        assert receipt.pdf_url == "https://pdf.example/1.pdf"
        assert invoicing.receipts[0]["reference"] == "PM1"

    def test_scripted_failure(self):
        invoicing = MockInvoicing()
        invoicing.fail_next()
        with pytest.raises(InvoicingError):
            invoicing.issue_receipt(InvoiceCustomer(name=None, email="a@example.com"), [], "PM1")
        assert invoicing.receipts == []
