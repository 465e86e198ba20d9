"""
debit_services.endpoints -- framework-agnostic HTTP handlers.

Responsibility:
    Turns request bodies into service calls and service outcomes into
    ``EndpointResponse(status_code, body)``.  Routing, TLS and admin
    authentication belong to whatever HTTP framework mounts these handlers.

Status mapping:
    Typed kernel exceptions map to status codes by class (most specific
    first).  Endpoints override the default where their contract differs:
    the adjustment endpoint answers 400 for a payment that is no longer
    adjustable, the refund endpoint answers 500 for gateway rejections.

    ValidationError 400, NotFoundError 404, StateConflictError 409,
    BusinessRuleError 422, GatewayTimeoutError 504, GatewayError 502,
    InvalidWebhookSignatureError 403, InvalidSweepSecretError 401,
    StoreError / ConfigurationError / ImmutabilityError 500.

    Every error body is ``{"success": false, "error": ..., "code": ...}``.

    A webhook delivery with events deferred behind an in-flight gateway
    call answers 503 so the gateway redelivers it.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from debit_gateways.signatures import SIGNATURE_HEADER
from debit_kernel.exceptions import (
    AuthenticationError,
    BusinessRuleError,
    ConfigurationError,
    DebitKernelError,
    GatewayError,
    GatewayTimeoutError,
    ImmutabilityError,
    InvalidSweepSecretError,
    InvalidWebhookSignatureError,
    InvoicingError,
    NotFoundError,
    StateConflictError,
    StoreError,
    ValidationError,
)
from debit_kernel.logging_config import LogContext, get_logger
from debit_services.wiring import DebitServices

logger = get_logger("services.endpoints")

DEFAULT_STATUS: dict[type[DebitKernelError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    StateConflictError: 409,
    BusinessRuleError: 422,
    GatewayTimeoutError: 504,
    GatewayError: 502,
    InvoicingError: 502,
    InvalidWebhookSignatureError: 403,
    InvalidSweepSecretError: 401,
    AuthenticationError: 401,
    StoreError: 500,
    ConfigurationError: 500,
    ImmutabilityError: 500,
}


@dataclass(frozen=True)
class EndpointResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def status_for(
    exc: DebitKernelError,
    overrides: Mapping[type[DebitKernelError], int] | None = None,
) -> int:
    """Status code for *exc*: the most specific mapped class wins."""
    overrides = overrides or {}
    for cls in type(exc).__mro__:
        if cls in overrides:
            return overrides[cls]
        if cls in DEFAULT_STATUS:
            return DEFAULT_STATUS[cls]
    return 500


def _error(
    exc: DebitKernelError,
    overrides: Mapping[type[DebitKernelError], int] | None = None,
) -> EndpointResponse:
    status = status_for(exc, overrides)
    log = logger.error if status >= 500 else logger.warning
    log("endpoint_error", extra={"status_code": status, "error_code": exc.code})
    return EndpointResponse(status, {"success": False, "error": str(exc), "code": exc.code})


def _internal_error() -> EndpointResponse:
    logger.exception("endpoint_unhandled_error")
    return EndpointResponse(
        500, {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
    )


def _header(headers: Mapping[str, str], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class DebitEndpoints:
    """The five HTTP operations over one DebitServices container."""

    def __init__(self, services: DebitServices, retry_sweep_secret: str):
        self._services = services
        self._retry_sweep_secret = retry_sweep_secret

    def charge(self, body: Mapping[str, Any]) -> EndpointResponse:
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                payment_id = self._services.charge_scheduler.charge_user(
                    body.get("customer_id"),
                    body.get("service_id"),
                    body.get("amount_cents"),
                    adjustments=body.get("adjustments") or (),
                )
            except DebitKernelError as exc:
                return _error(exc)
            except Exception:
                return _internal_error()
            return EndpointResponse(200, {"success": True, "payment_id": str(payment_id)})

    def admin_adjustment(self, body: Mapping[str, Any]) -> EndpointResponse:
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                new_final = self._services.adjustment_service.apply_adjustment(
                    body.get("payment_id"),
                    body.get("type"),
                    body.get("amount_cents"),
                    body.get("reason"),
                    body.get("created_by"),
                )
            except DebitKernelError as exc:
                return _error(exc, {StateConflictError: 400})
            except Exception:
                return _internal_error()
            return EndpointResponse(200, {"success": True, "new_final_amount": new_final})

    def admin_refund(self, body: Mapping[str, Any]) -> EndpointResponse:
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                refund_id = self._services.refund_service.issue_refund(
                    body.get("payment_id"),
                    body.get("amount_cents"),
                    body.get("reason"),
                    body.get("created_by"),
                )
            except DebitKernelError as exc:
                return _error(exc, {GatewayError: 500})
            except Exception:
                return _internal_error()
            return EndpointResponse(200, {"success": True, "refund_id": str(refund_id)})

    def retry_sweep(self, authorization: str | None) -> EndpointResponse:
        """Run one sweep; the caller presents ``Bearer <retry_sweep_secret>``."""
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                self._check_sweep_secret(authorization)
                result = self._services.retry_daemon.sweep()
            except DebitKernelError as exc:
                return _error(exc)
            except Exception:
                return _internal_error()
            return EndpointResponse(
                200,
                {
                    "success": True,
                    "retries_initiated": result.retries_initiated,
                    "selected": result.selected,
                    "failed": result.failed,
                    "skipped": result.skipped,
                    "unknown": result.unknown,
                },
            )

    def webhook_ingest(self, raw_body: bytes | str, headers: Mapping[str, str]) -> EndpointResponse:
        with LogContext.bind(correlation_id=str(uuid4())):
            try:
                result = self._services.webhook_reconciler.ingest(
                    raw_body, _header(headers, SIGNATURE_HEADER)
                )
            except DebitKernelError as exc:
                return _error(exc)
            except Exception:
                return _internal_error()
            body = {
                "processed_events": result.events_applied,
                "events_seen": result.events_seen,
            }
            if result.deferred:
                # Non-2xx makes the gateway redeliver; applied events come
                # back as duplicates.
                logger.warning("webhook_delivery_deferred", extra={"deferred": result.deferred})
                return EndpointResponse(
                    503,
                    {
                        "success": False,
                        "error": "Payment busy; redeliver later",
                        "code": "WEBHOOK_EVENTS_DEFERRED",
                        "deferred": result.deferred,
                        **body,
                    },
                )
            return EndpointResponse(200, {"success": True, **body})

    def _check_sweep_secret(self, authorization: str | None) -> None:
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(
            token.strip().encode("utf-8"), self._retry_sweep_secret.encode("utf-8")
        ):
            logger.warning("retry_sweep_unauthorized")
            raise InvalidSweepSecretError()
