"""
Typed Exception Hierarchy for the Debit Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Collections code sits between a ledger and a payment gateway that moves real
money. Callers (endpoints, the retry sweep, operators) must decide what to do
with a failure by its TYPE and CODE, never by parsing a message:

  1. Every error has a typed exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (payment_id, status, amounts)

Example - RIGHT way:
    try:
        scheduler.charge_user(customer_id, service_id, 1500)
    except UnpaidLimitExceededError as e:
        respond(422, code=e.code, failed_count=e.failed_count)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from DebitKernelError:

    DebitKernelError (base)
    |
    +-- ValidationError
    |   +-- NegativeFinalAmountError
    |   +-- MalformedWebhookError
    |
    +-- NotFoundError
    |   +-- CustomerNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- PaymentNotSubmittedError
    |
    +-- StateConflictError
    |   +-- CustomerInactiveError
    |   +-- NoActiveMandateError
    |   +-- PaymentNotAdjustableError
    |   +-- InvalidPaymentTransitionError
    |
    +-- BusinessRuleError
    |   +-- UnpaidLimitExceededError
    |   +-- RefundCeilingExceededError
    |
    +-- GatewayError
    |   +-- GatewayRequestError
    |   +-- GatewayTimeoutError
    |
    +-- InvoicingError
    |
    +-- StoreError
    |   +-- ReconciliationRiskError
    |
    +-- AuthenticationError
    |   +-- InvalidWebhookSignatureError
    |   +-- InvalidSweepSecretError
    |
    +-- ConfigurationError
    |   +-- MissingSettingError
    |   +-- InvalidSettingError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | VALIDATION_ERROR            | Missing or malformed input
                | NEGATIVE_FINAL_AMOUNT       | Adjustment would drive final below 0
                | MALFORMED_WEBHOOK           | Webhook body is not parseable
----------------|-----------------------------|-----------------------------------------
Not found       | CUSTOMER_NOT_FOUND          | Customer ID doesn't exist
                | PAYMENT_NOT_FOUND           | Payment ID doesn't exist
                | PAYMENT_NOT_SUBMITTED       | Refund for payment without gateway id
----------------|-----------------------------|-----------------------------------------
State           | CUSTOMER_INACTIVE           | Customer is suspended
                | NO_ACTIVE_MANDATE           | No active mandate backs the charge
                | PAYMENT_NOT_ADJUSTABLE      | Adjustment on non-scheduled payment
                | INVALID_PAYMENT_TRANSITION  | Status change not permitted
----------------|-----------------------------|-----------------------------------------
Business rule   | UNPAID_LIMIT_EXCEEDED       | failed count >= max_unpaid_allowed
                | REFUND_CEILING_EXCEEDED     | Refunds would exceed the final amount
----------------|-----------------------------|-----------------------------------------
Gateway         | GATEWAY_REQUEST_FAILED      | Gateway rejected or errored
                | GATEWAY_TIMEOUT             | Outcome unknown (no response)
                | INVOICING_FAILED            | Invoicing system call failed
----------------|-----------------------------|-----------------------------------------
Store           | STORE_ERROR                 | Database read/write failed
                | RECONCILIATION_RISK         | Gateway charged, store update failed
----------------|-----------------------------|-----------------------------------------
Auth            | INVALID_WEBHOOK_SIGNATURE   | Webhook HMAC mismatch
                | INVALID_SWEEP_SECRET        | Retry sweep bearer secret mismatch
----------------|-----------------------------|-----------------------------------------
Configuration   | MISSING_SETTING             | Settings key absent
                | INVALID_SETTING             | Settings value unparseable
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record

===============================================================================
HANDLING PATTERNS
===============================================================================

1. GATEWAY TIMEOUTS ARE NOT FAILURES:

    except GatewayTimeoutError as e:
        # The charge may exist at the gateway. The attempt is recorded and
        # the webhook resolves the payment. Do NOT resubmit.
        respond(504, code=e.code, payment_id=e.payment_id)

2. RECONCILIATION RISK NEEDS A HUMAN:

    except ReconciliationRiskError as e:
        page_operator(e.payment_id, e.gateway_payment_id)
"""


class DebitKernelError(Exception):
    """
    Base exception for all debit kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "DEBIT_KERNEL_ERROR"


# Validation exceptions


class ValidationError(DebitKernelError):
    """Input failed validation before any side effect."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class NegativeFinalAmountError(ValidationError):
    """An adjustment would drive a payment's final amount below zero."""

    code: str = "NEGATIVE_FINAL_AMOUNT"

    def __init__(self, payment_id: str, final_amount_cents: int, delta_cents: int):
        self.payment_id = payment_id
        self.final_amount_cents = final_amount_cents
        self.delta_cents = delta_cents
        super().__init__(
            "amount_cents",
            f"adjustment of {delta_cents} on payment {payment_id} would make "
            f"final amount {final_amount_cents + delta_cents}",
        )


class MalformedWebhookError(ValidationError):
    """Webhook body could not be parsed into events."""

    code: str = "MALFORMED_WEBHOOK"

    def __init__(self, reason: str):
        super().__init__("payload", reason)


# Not-found exceptions


class NotFoundError(DebitKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class CustomerNotFoundError(NotFoundError):
    """Customer with given ID was not found."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class PaymentNotFoundError(NotFoundError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class PaymentNotSubmittedError(NotFoundError):
    """Payment exists but has no gateway payment id to refund against."""

    code: str = "PAYMENT_NOT_SUBMITTED"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(
            f"Payment {payment_id} not found or not submitted to the gateway"
        )


# State conflict exceptions


class StateConflictError(DebitKernelError):
    """Base exception for operations invalid in the entity's current state."""

    code: str = "STATE_CONFLICT"


class CustomerInactiveError(StateConflictError):
    """Customer is not active and may not be charged."""

    code: str = "CUSTOMER_INACTIVE"

    def __init__(self, customer_id: str, status: str):
        self.customer_id = customer_id
        self.status = status
        super().__init__(f"Customer {customer_id} is {status}, not active")


class NoActiveMandateError(StateConflictError):
    """No active mandate exists for the customer."""

    code: str = "NO_ACTIVE_MANDATE"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"No active mandate found for customer {customer_id}")


class PaymentNotAdjustableError(StateConflictError):
    """Adjustments are only allowed while the payment is scheduled."""

    code: str = "PAYMENT_NOT_ADJUSTABLE"

    def __init__(self, payment_id: str, status: str):
        self.payment_id = payment_id
        self.status = status
        super().__init__(
            f"Payment {payment_id} cannot be adjusted. "
            f"Current status: {status}"
        )


class InvalidPaymentTransitionError(StateConflictError):
    """Requested status change is not in the payment state machine."""

    code: str = "INVALID_PAYMENT_TRANSITION"

    def __init__(self, payment_id: str, from_status: str, to_status: str):
        self.payment_id = payment_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Payment {payment_id} cannot move from {from_status} to {to_status}"
        )


# Business rule exceptions


class BusinessRuleError(DebitKernelError):
    """Base exception for policy gates."""

    code: str = "BUSINESS_RULE_VIOLATION"


class UnpaidLimitExceededError(BusinessRuleError):
    """Customer has too many failed payments to be charged again."""

    code: str = "UNPAID_LIMIT_EXCEEDED"

    def __init__(self, customer_id: str, failed_count: int, max_unpaid_allowed: int):
        self.customer_id = customer_id
        self.failed_count = failed_count
        self.max_unpaid_allowed = max_unpaid_allowed
        super().__init__(
            f"Customer {customer_id} has {failed_count} failed payments "
            f"(limit {max_unpaid_allowed}). Cannot schedule a new charge."
        )


class RefundCeilingExceededError(BusinessRuleError):
    """Refunds would exceed the payment's final amount."""

    code: str = "REFUND_CEILING_EXCEEDED"

    def __init__(
        self,
        payment_id: str,
        requested_cents: int,
        already_refunded_cents: int,
        final_amount_cents: int,
    ):
        self.payment_id = payment_id
        self.requested_cents = requested_cents
        self.already_refunded_cents = already_refunded_cents
        self.final_amount_cents = final_amount_cents
        super().__init__(
            f"Refund of {requested_cents} on payment {payment_id} exceeds "
            f"remaining {final_amount_cents - already_refunded_cents}"
        )


# Gateway exceptions


class GatewayError(DebitKernelError):
    """Base exception for payment gateway failures."""

    code: str = "GATEWAY_ERROR"


class GatewayRequestError(GatewayError):
    """Gateway rejected the request or returned an error."""

    code: str = "GATEWAY_REQUEST_FAILED"

    def __init__(self, operation: str, reason: str, status_code: int | None = None):
        self.operation = operation
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Gateway {operation} failed: {reason}")


class GatewayTimeoutError(GatewayError):
    """No response from the gateway; the outcome is unknown."""

    code: str = "GATEWAY_TIMEOUT"

    def __init__(self, operation: str, payment_id: str | None = None):
        self.operation = operation
        self.payment_id = payment_id
        super().__init__(
            f"Gateway {operation} timed out; outcome unknown"
            + (f" for payment {payment_id}" if payment_id else "")
        )


class InvoicingError(DebitKernelError):
    """Invoicing system call failed."""

    code: str = "INVOICING_FAILED"

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invoicing failed for {reference}: {reason}")


# Store exceptions


class StoreError(DebitKernelError):
    """Database read or write failed."""

    code: str = "STORE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Store {operation} failed: {reason}")


class ReconciliationRiskError(StoreError):
    """The gateway accepted a charge but the store could not record it."""

    code: str = "RECONCILIATION_RISK"

    def __init__(self, payment_id: str, gateway_payment_id: str, reason: str):
        self.payment_id = payment_id
        self.gateway_payment_id = gateway_payment_id
        super().__init__(
            "record_gateway_success",
            f"payment {payment_id} charged as {gateway_payment_id} "
            f"but not recorded: {reason}",
        )


# Authentication exceptions


class AuthenticationError(DebitKernelError):
    """Base exception for rejected callers."""

    code: str = "AUTHENTICATION_ERROR"


class InvalidWebhookSignatureError(AuthenticationError):
    """Webhook signature did not match the payload."""

    code: str = "INVALID_WEBHOOK_SIGNATURE"

    def __init__(self):
        super().__init__("Invalid webhook signature")


class InvalidSweepSecretError(AuthenticationError):
    """Retry sweep invoked without the shared secret."""

    code: str = "INVALID_SWEEP_SECRET"

    def __init__(self):
        super().__init__("Unauthorized retry sweep invocation")


# Configuration exceptions


class ConfigurationError(DebitKernelError):
    """Base exception for configuration problems."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)


class MissingSettingError(ConfigurationError):
    """A required settings key is absent."""

    code: str = "MISSING_SETTING"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Missing required setting: {key}")


class InvalidSettingError(ConfigurationError):
    """A settings value could not be parsed."""

    code: str = "INVALID_SETTING"

    def __init__(self, key: str, value: object, reason: str):
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value for setting {key}={value!r}: {reason}")


# Immutability exceptions


class ImmutabilityError(DebitKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    PaymentEvent and Adjustment rows are append-only; a Payment's
    original amount never changes after insert.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
