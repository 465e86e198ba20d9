"""
Adjustment arithmetic -- pure functions shared by AdjustmentService and
ChargeScheduler.

The final amount of a payment is always the original amount plus the signed
sum of its accepted adjustments, and never negative.
"""

from collections.abc import Iterable

from debit_kernel.domain.dtos import StagedAdjustment
from debit_kernel.exceptions import NegativeFinalAmountError, ValidationError
from debit_kernel.models.adjustment import AdjustmentType


def require_positive_cents(field: str, value: object) -> int:
    """Validate an integer amount in minor units, strictly positive."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer number of cents, got {value!r}")
    if value <= 0:
        raise ValidationError(field, f"must be positive, got {value}")
    return value


def require_text(field: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required")
    return value.strip()


def validate_adjustment(
    adjustment_type: object,
    amount_cents: object,
    reason: object,
    created_by: object,
) -> StagedAdjustment:
    """Check an adjustment request and normalize it.

    Raises:
        ValidationError: Unknown type, non-positive amount, or missing
            reason / actor.
    """
    try:
        kind = AdjustmentType(adjustment_type)
    except ValueError:
        raise ValidationError(
            "type", f"must be 'increase' or 'decrease', got {adjustment_type!r}"
        ) from None
    return StagedAdjustment(
        adjustment_type=kind.value,
        amount_cents=require_positive_cents("amount_cents", amount_cents),
        reason=require_text("reason", reason),
        created_by=require_text("created_by", created_by),
    )


def signed_delta(adjustment: StagedAdjustment) -> int:
    if adjustment.adjustment_type == AdjustmentType.DECREASE.value:
        return -adjustment.amount_cents
    return adjustment.amount_cents


def apply_delta(payment_id: str, final_amount_cents: int, delta_cents: int) -> int:
    """New final amount, or NegativeFinalAmountError if it would go below 0."""
    new_final = final_amount_cents + delta_cents
    if new_final < 0:
        raise NegativeFinalAmountError(payment_id, final_amount_cents, delta_cents)
    return new_final


def recompute_final_amount(
    payment_id: str, original_amount_cents: int, adjustments: Iterable[StagedAdjustment]
) -> int:
    """Fold adjustments over the original amount in order.

    Every intermediate value must be non-negative, matching the one-at-a-time
    rule of AdjustmentService.
    """
    final = original_amount_cents
    for adjustment in adjustments:
        final = apply_delta(payment_id, final, signed_delta(adjustment))
    return final
