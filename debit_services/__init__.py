"""
debit_services -- process-level composition of the debit kernel.

Responsibility:
    Builds the kernel services from configuration (``wiring``) and exposes
    them as framework-agnostic HTTP handlers (``endpoints``).

Architecture position:
    Dependency direction:
        debit_services/ -> debit_kernel/, debit_gateways/, debit_config/
        debit_kernel/   -> debit_services/ (FORBIDDEN)
"""

from debit_services.endpoints import DebitEndpoints, EndpointResponse, status_for
from debit_services.wiring import (
    DebitServices,
    build_gateway,
    build_invoicing,
    build_services,
)

__all__ = [
    "DebitEndpoints",
    "DebitServices",
    "EndpointResponse",
    "build_gateway",
    "build_invoicing",
    "build_services",
    "status_for",
]
