"""
BaseService -- abstract base for the lifecycle services.

Responsibility:
    Provides the common constructor, transaction scope, settings loading,
    row locking and event-log helpers for every service that talks to the
    payment gateway.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries are owned by the service, never held across an
      external call.  A lifecycle operation is a sequence of short
      transactions: claim, gateway call (no transaction open), record
      outcome.  An event written before a failing step stays written.
    - Database failures surface as StoreError (never a raw SQLAlchemy
      exception), so callers can tell store failures from gateway failures.

Failure modes:
    - StoreError from any transaction.
    - PaymentNotFoundError from lock_payment().
"""

from abc import ABC
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from debit_kernel.db.engine import transaction
from debit_kernel.domain.clock import Clock
from debit_kernel.domain.settings import Settings
from debit_kernel.exceptions import PaymentNotFoundError, StoreError, ValidationError
from debit_kernel.logging_config import get_logger
from debit_kernel.models.payment import Payment
from debit_kernel.services.event_log import EventLog
from debit_kernel.services.settings_loader import SettingsLoader

logger = get_logger("services.base")


def coerce_uuid(field: str, value: UUID | str) -> UUID:
    """Accept a UUID or its string form; anything else is a ValidationError."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(field, f"not a valid id: {value!r}") from None


def lock_payment(session: Session, payment_id: UUID) -> Payment:
    """Load a payment with a row lock (SELECT ... FOR UPDATE).

    Raises:
        PaymentNotFoundError: No such payment.
    """
    payment = session.execute(
        select(Payment).where(Payment.id == payment_id).with_for_update()
    ).scalar_one_or_none()
    if payment is None:
        raise PaymentNotFoundError(str(payment_id))
    return payment


class BaseService(ABC):
    """
    Abstract base class for lifecycle services.

    Contract:
        Accepts a session factory and a clock.  Each call opens, commits
        and closes its own transactions.

    Non-goals:
        - Does NOT retry failed transactions.
    """

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock):
        self._session_factory = session_factory
        self._clock = clock

    @contextmanager
    def _transaction(self, operation: str) -> Generator[Session, None, None]:
        """Transaction scope that maps database failures to StoreError."""
        try:
            with transaction(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error(
                "store_operation_failed",
                extra={"store_operation": operation, "error": str(exc)},
            )
            raise StoreError(operation, str(exc)) from exc

    def _load_settings(self) -> Settings:
        """Read settings fresh; never cached across operations."""
        with self._transaction("load_settings") as session:
            return SettingsLoader(session).load()

    def _record_event(
        self,
        payment_id: UUID,
        event_type: str,
        payload: dict[str, Any],
    ) -> None:
        """Append one event in its own transaction."""
        with self._transaction(f"record_{event_type}") as session:
            EventLog(session, self._clock).record(payment_id, event_type, payload)

    def _record_event_after_failure(
        self,
        payment_id: UUID,
        event_type: str,
        payload: dict[str, Any],
    ) -> None:
        """Append an event while another error is already propagating.

        A store failure here is logged and does not replace the error the
        caller is about to raise.
        """
        try:
            self._record_event(payment_id, event_type, payload)
        except StoreError:
            logger.exception(
                "event_log_write_failed",
                extra={"payment_id": str(payment_id), "event_type": event_type},
            )
