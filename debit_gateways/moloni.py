"""
MoloniInvoicing -- live InvoicingClient over the Moloni REST API.

Every call carries ``access_token`` and ``company_id`` as query parameters
and a JSON body.  Issuing a receipt is three steps: find or create the
customer (by VAT number, then by e-mail), insert an invoice-receipt
document, then fetch the PDF link for it.  Any failure surfaces as
InvoicingError; the reconciler records it and carries on.

Token acquisition and refresh belong to Moloni's OAuth flow and are
configured outside this client.
"""

from typing import Any, Sequence

import httpx

from debit_kernel.domain.gateway import InvoiceCustomer, InvoiceLine, InvoiceReceipt
from debit_kernel.exceptions import InvoicingError
from debit_kernel.logging_config import get_logger

logger = get_logger("gateways.moloni")

# Portuguese "final consumer" VAT number; never searched for.
FINAL_CONSUMER_VAT = "999999990"


class MoloniInvoicing:
    """Moloni implementation of the InvoicingClient protocol."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        company_id: int,
        document_set_id: int,
        product_id: int,
        tax_id: int,
        sandbox: bool = False,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self._auth = {"access_token": access_token, "company_id": company_id}
        self._document_set_id = document_set_id
        self._product_id = product_id
        self._tax_id = tax_id
        self._sandbox = sandbox
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def issue_receipt(
        self,
        customer: InvoiceCustomer,
        lines: Sequence[InvoiceLine],
        reference: str,
    ) -> InvoiceReceipt:
        customer_id = self._ensure_customer(customer, reference)
        products = [
            {
                "product_id": self._product_id,
                "name": line.description,
                "qty": line.quantity,
                "price": line.unit_price_cents / 100,
                "taxes": [{"tax_id": self._tax_id}],
            }
            for line in lines
        ]
        created = self._post(
            "/invoiceReceipts/insert/",
            {
                "document_set_id": self._document_set_id,
                "customer_id": customer_id,
                "your_reference": reference,
                "products": products,
                "status": 1,
            },
            reference,
        )
        document_id = created.get("document_id") if isinstance(created, dict) else None
        if not document_id:
            raise InvoicingError(reference, f"document not created: {created!r}")

        pdf_url = self._pdf_link(document_id, reference)
        logger.info(
            "moloni_receipt_issued",
            extra={"document_id": document_id, "reference": reference},
        )
        return InvoiceReceipt(document_id=str(document_id), pdf_url=pdf_url)

    def _ensure_customer(self, customer: InvoiceCustomer, reference: str) -> int:
        vat = customer.vat_number
        if vat and vat != FINAL_CONSUMER_VAT:
            found = self._post("/customers/getByVat/", {"vat": vat}, reference)
            match = _first_customer(found)
            if match is not None:
                return match

        search_endpoint = (
            "/customers/getBySearch/" if self._sandbox else "/customers/search/"
        )
        found = self._post(
            search_endpoint, {"search": customer.email, "qty": 50, "offset": 0}, reference
        )
        if isinstance(found, list):
            wanted = customer.email.lower()
            for candidate in found:
                if str(candidate.get("email", "")).lower() == wanted:
                    return int(candidate["customer_id"])

        created = self._post(
            "/customers/insert/",
            {
                "name": customer.name or "Consumidor Final",
                "vat": vat or FINAL_CONSUMER_VAT,
                "email": customer.email,
                "language_id": 1,
                "country_id": 1,
            },
            reference,
        )
        customer_id = created.get("customer_id") if isinstance(created, dict) else None
        if not customer_id:
            raise InvoicingError(reference, f"customer not created: {created!r}")
        logger.info("moloni_customer_created", extra={"customer_id": customer_id})
        return int(customer_id)

    def _pdf_link(self, document_id: int, reference: str) -> str | None:
        found = self._post("/documents/getPDFLink/", {"document_id": document_id}, reference)
        if isinstance(found, dict):
            return found.get("url")
        return None

    def _post(self, endpoint: str, payload: dict[str, Any], reference: str) -> Any:
        try:
            response = self._client.post(endpoint, params=self._auth, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "moloni_api_error",
                extra={
                    "endpoint": endpoint,
                    "status_code": exc.response.status_code,
                    "error": exc.response.text[:200],
                },
            )
            raise InvoicingError(
                reference, f"{endpoint} {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("moloni_transport_error", extra={"endpoint": endpoint, "error": str(exc)})
            raise InvoicingError(reference, f"{endpoint}: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise InvoicingError(reference, f"{endpoint}: response is not JSON") from exc


def _first_customer(found: Any) -> int | None:
    if isinstance(found, list):
        found = found[0] if found else None
    if isinstance(found, dict) and found.get("customer_id"):
        return int(found["customer_id"])
    return None
