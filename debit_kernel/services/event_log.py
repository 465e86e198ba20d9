"""
EventLog -- the single writer of the append-only payment event log.

Responsibility:
    Adds PaymentEvent rows inside the caller's transaction and mirrors each
    one to the structured log.

Architecture position:
    Kernel > Services.  Flush-only: never commits.

Audit relevance:
    Every lifecycle step of every payment goes through record().
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from debit_kernel.domain.clock import Clock
from debit_kernel.logging_config import get_logger
from debit_kernel.models.payment_event import PaymentEvent

logger = get_logger("services.event_log")


class EventLog:
    """Appends payment events within the caller's transaction."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def record(
        self,
        payment_id: UUID,
        event_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> PaymentEvent:
        """Add one event and flush it.

        Raises:
            IntegrityError: idempotency_key is already recorded.
        """
        event = PaymentEvent(
            payment_id=payment_id,
            event_type=event_type,
            raw_payload=payload,
            idempotency_key=idempotency_key,
            occurred_at=self._clock.now_utc(),
        )
        self._session.add(event)
        self._session.flush()
        logger.info(
            "payment_event_recorded",
            extra={
                "payment_id": str(payment_id),
                "event_type": event_type,
            },
        )
        return event
