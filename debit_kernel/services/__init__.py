"""Lifecycle services (imperative shell over the payment store)."""

from debit_kernel.services.adjustment_service import AdjustmentService
from debit_kernel.services.charge_scheduler import ChargeScheduler
from debit_kernel.services.event_log import EventLog
from debit_kernel.services.refund_service import RefundService
from debit_kernel.services.retry_daemon import RetryDaemon
from debit_kernel.services.settings_loader import SettingsLoader
from debit_kernel.services.webhook_reconciler import WebhookReconciler

__all__ = [
    "AdjustmentService",
    "ChargeScheduler",
    "EventLog",
    "RefundService",
    "RetryDaemon",
    "SettingsLoader",
    "WebhookReconciler",
]
