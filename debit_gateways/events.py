"""
GoCardless webhook body parsing.

A delivery is ``{"events": [...]}``.  Only ``resource_type == "payments"``
events are returned; actions without a local status are dropped.
"""

import json
from typing import Any

from debit_kernel.domain.gateway import GatewayEvent
from debit_kernel.exceptions import MalformedWebhookError
from debit_kernel.logging_config import get_logger
from debit_kernel.models.payment import PaymentStatus

logger = get_logger("gateways.events")

# GoCardless payment action -> local PaymentStatus
ACTION_STATUS_MAP: dict[str, PaymentStatus] = {
    "created": PaymentStatus.CREATED,
    "submitted": PaymentStatus.SUBMITTED,
    "confirmed": PaymentStatus.CONFIRMED,
    "paid_out": PaymentStatus.CONFIRMED,
    "failed": PaymentStatus.FAILED,
    "late_failure_settled": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.CHARGEBACK,
    "chargeback_settled": PaymentStatus.CHARGEBACK,
}


def parse_payment_events(payload: bytes) -> list[GatewayEvent]:
    """Parse a delivery body into payment events.

    Raises:
        MalformedWebhookError: Body is not JSON or has no ``events`` list.
    """
    try:
        body = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedWebhookError(f"body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict) or not isinstance(body.get("events"), list):
        raise MalformedWebhookError("body has no 'events' list")

    events: list[GatewayEvent] = []
    for raw in body["events"]:
        parsed = _parse_one(raw)
        if parsed is not None:
            events.append(parsed)
    return events


def _parse_one(raw: Any) -> GatewayEvent | None:
    if not isinstance(raw, dict) or raw.get("resource_type") != "payments":
        return None

    action = raw.get("action")
    status = ACTION_STATUS_MAP.get(action) if isinstance(action, str) else None
    if status is None:
        logger.info("webhook_action_ignored", extra={"action": action})
        return None

    links = raw.get("links")
    event_id = raw.get("id")
    gateway_payment_id = links.get("payment") if isinstance(links, dict) else None
    if not event_id or not gateway_payment_id:
        logger.warning(
            "webhook_event_incomplete",
            extra={"action": action, "has_id": bool(event_id)},
        )
        return None

    metadata = raw.get("resource_metadata") or raw.get("metadata")
    reference = metadata.get("payment_id") if isinstance(metadata, dict) else None
    return GatewayEvent(
        event_id=str(event_id),
        action=str(action),
        gateway_payment_id=str(gateway_payment_id),
        new_status=status.value,
        payment_reference=str(reference) if reference is not None else None,
        raw=raw,
    )
