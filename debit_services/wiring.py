"""
debit_services.wiring -- Central DI container for the debit services.

Responsibility:
    Builds the gateway and invoicing clients named by configuration and
    constructs every kernel service exactly once around them.  Services
    never construct their own collaborators.

Architecture position:
    Services -- top of the stack.  The only place that reads AppConfig and
    chooses between live and mock adapters.

Usage:
    from debit_services.wiring import build_services

    services = build_services()               # DEBIT_CONFIG
    services.charge_scheduler.charge_user(customer_id, "svc-1", 1500)
    services.retry_daemon.sweep()
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from debit_config import AppConfig, GatewayMode, InvoicingMode, get_active_config
from debit_gateways import GoCardlessGateway, MockGateway, MockInvoicing, MoloniInvoicing
from debit_kernel.db.engine import get_session_factory, init_engine_from_url
from debit_kernel.db.immutability import register_immutability_listeners
from debit_kernel.domain.clock import Clock, SystemClock
from debit_kernel.domain.gateway import GatewayClient, InvoicingClient
from debit_kernel.logging_config import configure_logging, get_logger
from debit_kernel.services import (
    AdjustmentService,
    ChargeScheduler,
    RefundService,
    RetryDaemon,
    WebhookReconciler,
)

logger = get_logger("services.wiring")


def build_gateway(config: AppConfig) -> GatewayClient:
    gateway = config.gateway
    if gateway.mode == GatewayMode.LIVE:
        return GoCardlessGateway(
            base_url=gateway.base_url,
            access_token=gateway.access_token,
            webhook_secret=gateway.webhook_secret,
            api_version=gateway.api_version,
            timeout_seconds=gateway.timeout_seconds,
        )
    return MockGateway(webhook_secret=gateway.webhook_secret or None)


def build_invoicing(config: AppConfig) -> InvoicingClient | None:
    """Invoicing client for the configured mode; None when disabled."""
    invoicing = config.invoicing
    if invoicing.mode == InvoicingMode.LIVE:
        return MoloniInvoicing(
            base_url=invoicing.base_url,
            access_token=invoicing.access_token,
            company_id=invoicing.company_id,
            document_set_id=invoicing.document_set_id,
            product_id=invoicing.product_id,
            tax_id=invoicing.tax_id,
            sandbox=invoicing.sandbox,
            timeout_seconds=invoicing.timeout_seconds,
        )
    if invoicing.mode == InvoicingMode.MOCK:
        return MockInvoicing()
    return None


class DebitServices:
    """Holds one instance of every service, sharing gateway, clock and store.

    All wiring is visible here; swap a collaborator by passing it in.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: GatewayClient,
        clock: Clock,
        invoicing: InvoicingClient | None = None,
        retry_batch_size: int | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.invoicing = invoicing
        self.clock = clock

        self.charge_scheduler = ChargeScheduler(session_factory, gateway, clock)
        self.adjustment_service = AdjustmentService(session_factory, clock)
        self.refund_service = RefundService(session_factory, gateway, clock)
        self.webhook_reconciler = WebhookReconciler(
            session_factory, gateway, clock, invoicing=invoicing
        )
        self.retry_daemon = RetryDaemon(
            session_factory, gateway, clock, batch_size=retry_batch_size
        )


def build_services(
    config: AppConfig | None = None,
    clock: Clock | None = None,
) -> DebitServices:
    """Build DebitServices from configuration (single production entrypoint).

    Initializes the engine, registers the ORM immutability listeners and
    picks the adapters named by ``gateway.mode`` / ``invoicing.mode``.
    """
    config = config or get_active_config()
    configure_logging(level=config.log_level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    register_immutability_listeners()

    services = DebitServices(
        session_factory=get_session_factory(),
        gateway=build_gateway(config),
        clock=clock or SystemClock(),
        invoicing=build_invoicing(config),
        retry_batch_size=config.retry_batch_size,
    )
    logger.info(
        "services_built",
        extra={
            "gateway_mode": config.gateway.mode.value,
            "invoicing_mode": config.invoicing.mode.value,
        },
    )
    return services
