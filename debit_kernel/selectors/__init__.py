"""Read-only query selectors."""

from debit_kernel.selectors.payment_selector import PaymentSelector

__all__ = ["PaymentSelector"]
