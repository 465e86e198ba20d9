"""
In-memory gateway and invoicing clients for local runs and tests.

MockGateway behaves like the live gateway where the kernel can observe it:
ids are minted per request (``PM1001``, ``RF501``, ...), a repeated
idempotency key returns the id minted the first time, webhook deliveries use
the live body format, and failures or timeouts can be queued per call.
"""

import json
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Sequence

from debit_gateways.events import parse_payment_events
from debit_gateways.signatures import compute_signature, verify_signature
from debit_kernel.domain.gateway import (
    GatewayEvent,
    InvoiceCustomer,
    InvoiceLine,
    InvoiceReceipt,
)
from debit_kernel.exceptions import (
    GatewayRequestError,
    GatewayTimeoutError,
    InvoicingError,
)
from debit_kernel.logging_config import get_logger

logger = get_logger("gateways.mock")


@dataclass
class GatewayCall:
    """One recorded call to the mock gateway."""

    operation: str
    idempotency_key: str
    args: dict[str, Any] = field(default_factory=dict)
    resource_id: str | None = None


class _Timeout:
    """Queued timeout; ``applied`` means the gateway acted before the timeout."""

    def __init__(self, applied: bool):
        self.applied = applied


class MockGateway:
    """In-memory GatewayClient.

    With a webhook secret the signature check is the live HMAC check;
    without one every delivery is accepted.
    """

    def __init__(self, webhook_secret: str | None = None):
        self._webhook_secret = webhook_secret
        self._lock = threading.Lock()
        self._payment_counter = 1000
        self._refund_counter = 500
        self._by_key: dict[str, str] = {}
        self._create_outcomes: deque = deque()
        self._refund_outcomes: deque = deque()
        self.calls: list[GatewayCall] = []
        self.payments: dict[str, dict[str, Any]] = {}
        self.refunds: dict[str, dict[str, Any]] = {}

    # -- scripting -----------------------------------------------------------

    def fail_next_create(self, error: Exception | None = None) -> None:
        self._create_outcomes.append(
            error or GatewayRequestError("create_payment", "422 - mandate is not active", 422)
        )

    def time_out_next_create(self, applied: bool = True) -> None:
        self._create_outcomes.append(_Timeout(applied))

    def fail_next_refund(self, error: Exception | None = None) -> None:
        self._refund_outcomes.append(
            error or GatewayRequestError("refund_payment", "422 - refund not allowed", 422)
        )

    def time_out_next_refund(self, applied: bool = True) -> None:
        self._refund_outcomes.append(_Timeout(applied))

    def calls_for(self, operation: str) -> list[GatewayCall]:
        return [call for call in self.calls if call.operation == operation]

    # -- GatewayClient -------------------------------------------------------

    def create_payment(
        self,
        mandate_ref: str,
        amount_cents: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        args = {
            "mandate_ref": mandate_ref,
            "amount_cents": amount_cents,
            "currency": currency,
            "description": description,
            "metadata": dict(metadata),
        }
        with self._lock:
            call = GatewayCall("create_payment", idempotency_key, args)
            self.calls.append(call)
            if idempotency_key in self._by_key:
                call.resource_id = self._by_key[idempotency_key]
                return call.resource_id

            outcome = self._create_outcomes.popleft() if self._create_outcomes else None
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, _Timeout) and not outcome.applied:
                raise GatewayTimeoutError("create_payment")

            self._payment_counter += 1
            payment_id = f"PM{self._payment_counter}"
            self.payments[payment_id] = args
            self._by_key[idempotency_key] = payment_id
            call.resource_id = payment_id

        logger.info(
            "mock_payment_created",
            extra={"gateway_payment_id": payment_id, "amount_cents": amount_cents},
        )
        if isinstance(outcome, _Timeout):
            raise GatewayTimeoutError("create_payment")
        return payment_id

    def refund_payment(
        self,
        gateway_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
    ) -> str:
        args = {
            "gateway_payment_id": gateway_payment_id,
            "amount_cents": amount_cents,
            "reason": reason,
        }
        with self._lock:
            call = GatewayCall("refund_payment", idempotency_key, args)
            self.calls.append(call)
            if idempotency_key in self._by_key:
                call.resource_id = self._by_key[idempotency_key]
                return call.resource_id

            outcome = self._refund_outcomes.popleft() if self._refund_outcomes else None
            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, _Timeout) and not outcome.applied:
                raise GatewayTimeoutError("refund_payment")

            self._refund_counter += 1
            refund_id = f"RF{self._refund_counter}"
            self.refunds[refund_id] = args
            self._by_key[idempotency_key] = refund_id
            call.resource_id = refund_id

        logger.info(
            "mock_refund_created",
            extra={"gateway_refund_id": refund_id, "amount_cents": amount_cents},
        )
        if isinstance(outcome, _Timeout):
            raise GatewayTimeoutError("refund_payment")
        return refund_id

    def validate_webhook(self, payload: bytes, signature: str | None) -> bool:
        if self._webhook_secret is None:
            return True
        return verify_signature(self._webhook_secret, payload, signature)

    def parse_webhook(self, payload: bytes) -> list[GatewayEvent]:
        return parse_payment_events(payload)

    # -- webhook helpers -----------------------------------------------------

    def sign(self, payload: bytes) -> str:
        return compute_signature(self._webhook_secret or "", payload)


def payment_event(
    event_id: str,
    action: str,
    gateway_payment_id: str,
    payment_reference: str | None = None,
    created_at: str = "2024-01-01T00:00:00.000Z",
) -> dict[str, Any]:
    """Build one ``payments`` event in the live delivery format."""
    event: dict[str, Any] = {
        "id": event_id,
        "created_at": created_at,
        "action": action,
        "resource_type": "payments",
        "links": {"payment": gateway_payment_id},
        "details": {"origin": "gocardless", "cause": action},
    }
    if payment_reference is not None:
        event["resource_metadata"] = {"payment_id": payment_reference}
    return event


def build_delivery(events: Sequence[dict[str, Any]]) -> bytes:
    return json.dumps({"events": list(events)}).encode("utf-8")


class MockInvoicing:
    """In-memory InvoicingClient; records every receipt it issues."""

    def __init__(self, base_pdf_url: str = "https://invoices.example/receipts"):
        self._base_pdf_url = base_pdf_url.rstrip("/")
        self._lock = threading.Lock()
        self._counter = 0
        self._failures: deque[Exception] = deque()
        self.receipts: list[dict[str, Any]] = []

    def fail_next(self, error: Exception | None = None) -> None:
        self._failures.append(error or InvoicingError("mock", "invoicing unavailable"))

    def issue_receipt(
        self,
        customer: InvoiceCustomer,
        lines: Sequence[InvoiceLine],
        reference: str,
    ) -> InvoiceReceipt:
        with self._lock:
            if self._failures:
                raise self._failures.popleft()
            self._counter += 1
            document_id = str(self._counter)
            self.receipts.append(
                {
                    "document_id": document_id,
                    "customer": customer,
                    "lines": list(lines),
                    "reference": reference,
                }
            )
        return InvoiceReceipt(
            document_id=document_id,
            pdf_url=f"{self._base_pdf_url}/{document_id}.pdf",
        )
