"""
Gateway ports -- what the kernel needs from the payment gateway and the
invoicing system.

Contract:
    GatewayClient creates and refunds gateway payments and turns inbound
    webhook deliveries into GatewayEvent values.  InvoicingClient issues an
    invoice-receipt for a confirmed payment.

Architecture: Kernel > Domain.  Implementations live in ``debit_gateways``
(live HTTP clients and in-memory mocks); services receive them by
constructor injection and never branch on which variant they hold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class GatewayEvent:
    """One payment status notification parsed from a webhook delivery.

    Attributes:
        event_id: Gateway's unique id for the notification.
        action: Gateway action name (e.g. "confirmed", "paid_out").
        gateway_payment_id: Gateway payment the notification is about.
        new_status: Local PaymentStatus value the action maps to.
        payment_reference: Local payment id echoed back from creation
            metadata, used when the gateway id was never recorded.
        raw: The notification exactly as received.
    """

    event_id: str
    action: str
    gateway_payment_id: str
    new_status: str
    payment_reference: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class GatewayClient(Protocol):
    """Protocol for the direct-debit payment gateway."""

    def create_payment(
        self,
        mandate_ref: str,
        amount_cents: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        """Create a gateway payment and return its gateway id.

        Raises:
            GatewayRequestError: The gateway rejected or failed the request.
            GatewayTimeoutError: No response; the payment may exist.
        """
        ...

    def refund_payment(
        self,
        gateway_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
    ) -> str:
        """Refund (part of) a gateway payment and return the refund id."""
        ...

    def validate_webhook(self, payload: bytes, signature: str | None) -> bool:
        """True iff the signature authenticates the raw payload."""
        ...

    def parse_webhook(self, payload: bytes) -> list[GatewayEvent]:
        """Parse a delivery into payment events; other resources are dropped.

        Raises:
            MalformedWebhookError: The body is not a valid delivery.
        """
        ...


@dataclass(frozen=True)
class InvoiceCustomer:
    """Billing identity passed to the invoicing system."""

    name: str | None
    email: str
    vat_number: str | None = None


@dataclass(frozen=True)
class InvoiceLine:
    """One invoiced line."""

    description: str
    unit_price_cents: int
    quantity: int = 1


@dataclass(frozen=True)
class InvoiceReceipt:
    """Issued invoice-receipt."""

    document_id: str
    pdf_url: str | None = None


@runtime_checkable
class InvoicingClient(Protocol):
    """Protocol for issuing invoice-receipts for collected payments."""

    def issue_receipt(
        self,
        customer: InvoiceCustomer,
        lines: Sequence[InvoiceLine],
        reference: str,
    ) -> InvoiceReceipt:
        """Issue an invoice-receipt.

        Raises:
            InvoicingError: The invoicing system failed.
        """
        ...
