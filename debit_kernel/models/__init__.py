"""ORM models for the debit kernel."""

from debit_kernel.models.adjustment import Adjustment, AdjustmentType
from debit_kernel.models.customer import Customer, CustomerStatus
from debit_kernel.models.mandate import Mandate, MandateStatus
from debit_kernel.models.payment import (
    CLAIM_STATUSES,
    VALID_TRANSITIONS,
    WEBHOOK_SOURCE_STATUSES,
    WEBHOOK_TARGET_STATUSES,
    Payment,
    PaymentStatus,
)
from debit_kernel.models.payment_event import PaymentEvent
from debit_kernel.models.refund import OUTSTANDING_REFUND_STATUSES, Refund, RefundStatus
from debit_kernel.models.setting import Setting

__all__ = [
    "Adjustment",
    "AdjustmentType",
    "CLAIM_STATUSES",
    "Customer",
    "CustomerStatus",
    "Mandate",
    "MandateStatus",
    "OUTSTANDING_REFUND_STATUSES",
    "Payment",
    "PaymentEvent",
    "PaymentStatus",
    "Refund",
    "RefundStatus",
    "Setting",
    "VALID_TRANSITIONS",
    "WEBHOOK_SOURCE_STATUSES",
    "WEBHOOK_TARGET_STATUSES",
]
