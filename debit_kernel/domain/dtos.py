"""
Data transfer objects exchanged between services, selectors and endpoints.

All DTOs are frozen dataclasses: services return them, selectors build them
from ORM rows, and nothing downstream mutates them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class StagedAdjustment:
    """An adjustment submitted together with a charge request.

    Applied to the freshly scheduled payment before it is submitted.
    """

    adjustment_type: str
    amount_cents: int
    reason: str
    created_by: str


@dataclass(frozen=True)
class PaymentSnapshot:
    """Read-only view of a payment row."""

    payment_id: UUID
    customer_id: UUID
    service_id: str
    status: str
    original_amount_cents: int
    final_amount_cents: int
    currency: str
    attempts: int
    last_attempt_at: datetime | None
    gateway_payment_id: str | None


@dataclass(frozen=True)
class WebhookResult:
    """Outcome of one webhook delivery.

    Attributes:
        events_seen: Events parsed from the delivery.
        events_applied: New events recorded against a payment.
        duplicates: Events whose id was already recorded.
        orphans: Events that matched no local payment.
        rejected: Events refused by the state machine.
        deferred: Events for a payment with a gateway call in flight; not
            recorded, so a redelivery is applied once the claim is released.
    """

    events_seen: int
    events_applied: int
    duplicates: int = 0
    orphans: int = 0
    rejected: int = 0
    deferred: int = 0


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one retry sweep.

    ``retried`` counts payments the gateway accepted; ``unknown`` counts
    attempts whose outcome will be resolved by a webhook.
    """

    selected: int
    retried: int
    skipped: int
    failed: int
    unknown: int
    payment_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def retries_initiated(self) -> int:
        return self.retried


@dataclass(frozen=True)
class EventRecord:
    """Read-only view of one payment event log entry."""

    event_type: str
    raw_payload: dict
    occurred_at: datetime
    idempotency_key: str | None = None
