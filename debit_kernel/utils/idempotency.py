"""
Idempotency key generation utilities.

Outbound keys are sent to the gateway so a resubmitted request for the same
attempt returns the original resource instead of charging twice.  Inbound
keys are stored on the payment event log (UNIQUE) so a redelivered webhook
is recorded once.
"""

from uuid import UUID


def charge_idempotency_key(payment_id: UUID | str, attempt: int) -> str:
    """
    Key for a gateway payment creation.

    Format: payment_id:attempt

    Attempt numbers start at 1 and advance with every submission, so a
    retry is a new gateway request while a replay of the same attempt is not.

    Example:
        >>> charge_idempotency_key(uuid, 2)
        "550e8400-e29b-41d4-a716-446655440000:2"
    """
    if attempt < 1:
        raise ValueError(f"Attempt numbers start at 1, got {attempt}")
    return f"{payment_id}:{attempt}"


def refund_idempotency_key(refund_id: UUID | str) -> str:
    """Key for a gateway refund creation: one per local refund row."""
    return f"refund:{refund_id}"


def webhook_idempotency_key(action: str, event_id: str) -> str:
    """
    Key for recording an inbound gateway event.

    Format: webhook:action:event_id
    """
    return f"webhook:{action}:{event_id}"


def parse_webhook_idempotency_key(key: str) -> tuple[str, str]:
    """
    Parse a webhook idempotency key into (action, event_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or parts[0] != "webhook":
        raise ValueError(f"Invalid webhook idempotency key format: {key}")
    return parts[1], parts[2]
