"""
Debit Gateways -- adapters for the payment gateway and the invoicing system.

Live clients speak HTTP through httpx; mocks keep state in memory.  Both
satisfy the ports in ``debit_kernel.domain.gateway`` and are chosen by
``debit_services.wiring`` from configuration.
"""

from debit_gateways.events import ACTION_STATUS_MAP, parse_payment_events
from debit_gateways.gocardless import GoCardlessGateway
from debit_gateways.mock import (
    GatewayCall,
    MockGateway,
    MockInvoicing,
    build_delivery,
    payment_event,
)
from debit_gateways.moloni import MoloniInvoicing
from debit_gateways.signatures import (
    SIGNATURE_HEADER,
    compute_signature,
    verify_signature,
)

__all__ = [
    "ACTION_STATUS_MAP",
    "GatewayCall",
    "GoCardlessGateway",
    "MockGateway",
    "MockInvoicing",
    "MoloniInvoicing",
    "SIGNATURE_HEADER",
    "build_delivery",
    "compute_signature",
    "parse_payment_events",
    "payment_event",
    "verify_signature",
]
