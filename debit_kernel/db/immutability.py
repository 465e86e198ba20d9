"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The payment event log is both the audit trail and the idempotency ledger for
inbound webhooks.  If a row could be rewritten, a replayed webhook could slip
past deduplication and an auditor could no longer trust the history of a
charge.  Adjustments explain every cent between original and final amount, so
they are equally append-only.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable            | Protected fields
----------------|---------------------------|-------------------------------
PaymentEvent    | ALWAYS (from creation)    | every field, no delete
Adjustment      | ALWAYS (from creation)    | every field, no delete
Payment         | ALWAYS (from creation)    | original_amount_cents, customer_id,
                |                           | service_id; no delete

===============================================================================
USAGE
===============================================================================

Called once at application startup (debit_services.wiring does this):

    from debit_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from debit_kernel.exceptions import ImmutabilityViolationError
from debit_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_PAYMENT_FROZEN_FIELDS = ("original_amount_cents", "customer_id", "service_id")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    """Block any field change on an append-only record."""
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key == "updated_at":
            continue
        if attr.history.has_changes():
            _block(
                type(target).__name__,
                target,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on append-only record",
            )


def _check_append_only_delete(mapper, connection, target):
    """Block deletion of an append-only record."""
    _block(type(target).__name__, target, "DELETE", "Append-only records cannot be deleted")


def _check_payment_immutability(mapper, connection, target):
    """
    Prevent changes to a payment's identity and original amount.

    final_amount_cents, status and the attempt/gateway fields are mutable
    lifecycle state; the original amount is fixed at creation.
    """
    insp = inspect(target)
    for key in _PAYMENT_FROZEN_FIELDS:
        if insp.attrs[key].history.deleted:
            _block("Payment", target, "UPDATE", f"Cannot modify field '{key}' after creation")


def _check_payment_delete(mapper, connection, target):
    """Payments are never deleted."""
    _block("Payment", target, "DELETE", "Payments are never deleted")


def _listeners():
    from debit_kernel.models.adjustment import Adjustment
    from debit_kernel.models.payment import Payment
    from debit_kernel.models.payment_event import PaymentEvent

    return (
        (PaymentEvent, "before_update", _check_append_only_update),
        (PaymentEvent, "before_delete", _check_append_only_delete),
        (Adjustment, "before_update", _check_append_only_update),
        (Adjustment, "before_delete", _check_append_only_delete),
        (Payment, "before_update", _check_payment_immutability),
        (Payment, "before_delete", _check_payment_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.info("immutability_listeners_registered")


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
