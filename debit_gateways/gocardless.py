"""
GoCardlessGateway -- live GatewayClient over the GoCardless REST API.

Requests are JSON over httpx with ``Authorization: Bearer``,
``GoCardless-Version`` and a caller-supplied ``Idempotency-Key``.  A repeated
key for a request GoCardless already fulfilled answers 409
``idempotent_creation_conflict``; the conflicting resource id in that answer
is the id of the original creation and is returned as a success.

Failure classification:
    - The request never reached the gateway (connect error, connect or pool
      timeout): GatewayRequestError.  Safe to treat as "not charged".
    - The request was sent but no answer arrived (read/write timeout):
      GatewayTimeoutError.  The outcome is unknown.
    - Any non-2xx answer other than the idempotent conflict:
      GatewayRequestError carrying the HTTP status.
"""

from typing import Any

import httpx

from debit_gateways.events import parse_payment_events
from debit_gateways.signatures import verify_signature
from debit_kernel.domain.gateway import GatewayEvent
from debit_kernel.exceptions import GatewayRequestError, GatewayTimeoutError
from debit_kernel.logging_config import get_logger

logger = get_logger("gateways.gocardless")

DEFAULT_API_VERSION = "2015-07-06"
IDEMPOTENT_CONFLICT = "idempotent_creation_conflict"


class GoCardlessGateway:
    """GoCardless implementation of the GatewayClient protocol."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        webhook_secret: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self._webhook_secret = webhook_secret
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "GoCardless-Version": api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def close(self) -> None:
        self._client.close()

    def create_payment(
        self,
        mandate_ref: str,
        amount_cents: int,
        currency: str,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        body = {
            "payments": {
                "amount": amount_cents,
                "currency": currency,
                "description": description,
                "links": {"mandate": mandate_ref},
                "metadata": dict(metadata),
            }
        }
        data = self._post("/payments", body, idempotency_key, "create_payment")
        if "conflicting_resource_id" in data:
            return data["conflicting_resource_id"]
        return self._resource_id(data, "payments", "create_payment")

    def refund_payment(
        self,
        gateway_payment_id: str,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
    ) -> str:
        body = {
            "refunds": {
                "amount": amount_cents,
                "links": {"payment": gateway_payment_id},
                "metadata": {"reason": reason[:500]},
            }
        }
        data = self._post("/refunds", body, idempotency_key, "refund_payment")
        if "conflicting_resource_id" in data:
            return data["conflicting_resource_id"]
        return self._resource_id(data, "refunds", "refund_payment")

    def validate_webhook(self, payload: bytes, signature: str | None) -> bool:
        return verify_signature(self._webhook_secret, payload, signature)

    def parse_webhook(self, payload: bytes) -> list[GatewayEvent]:
        return parse_payment_events(payload)

    def _post(
        self,
        path: str,
        body: dict[str, Any],
        idempotency_key: str,
        operation: str,
    ) -> dict[str, Any]:
        headers = {**self._headers, "Idempotency-Key": idempotency_key}
        try:
            response = self._client.post(path, json=body, headers=headers)
        except (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout) as exc:
            logger.error(
                "gateway_unreachable",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayRequestError(operation, f"gateway unreachable: {exc}") from exc
        except httpx.TimeoutException as exc:
            logger.warning(
                "gateway_timeout",
                extra={"operation": operation, "idempotency_key": idempotency_key},
            )
            raise GatewayTimeoutError(operation) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "gateway_transport_error",
                extra={"operation": operation, "error": str(exc)},
            )
            raise GatewayRequestError(operation, str(exc)) from exc

        if response.status_code == 409:
            conflicting = _conflicting_resource_id(response)
            if conflicting is not None:
                logger.info(
                    "gateway_idempotent_replay",
                    extra={"operation": operation, "resource_id": conflicting},
                )
                return {"conflicting_resource_id": conflicting}

        if response.is_error:
            message = _error_message(response)
            logger.error(
                "gateway_api_error",
                extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message,
                },
            )
            raise GatewayRequestError(operation, message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise GatewayRequestError(
                operation, "response is not JSON", status_code=response.status_code
            ) from exc

    @staticmethod
    def _resource_id(data: dict[str, Any], resource: str, operation: str) -> str:
        try:
            return str(data[resource]["id"])
        except (KeyError, TypeError) as exc:
            raise GatewayRequestError(operation, f"response has no {resource}.id") from exc


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    error = body.get("error") if isinstance(body, dict) else None
    return error if isinstance(error, dict) else {}


def _conflicting_resource_id(response: httpx.Response) -> str | None:
    for detail in _error_body(response).get("errors") or []:
        if detail.get("reason") == IDEMPOTENT_CONFLICT:
            resource_id = (detail.get("links") or {}).get("conflicting_resource_id")
            if resource_id:
                return str(resource_id)
    return None


def _error_message(response: httpx.Response) -> str:
    error = _error_body(response)
    message = error.get("message")
    if message:
        return f"{response.status_code} - {message}"
    return f"{response.status_code} - {response.text[:200]}"
