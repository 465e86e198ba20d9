"""
Process configuration schema.

Frozen dataclasses parsed from YAML by ``debit_config.loader``.  Business
settings (unpaid cap, retry policy, currency) are NOT here; they live in the
``settings`` table and are read per operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class GatewayMode(str, Enum):
    LIVE = "live"
    MOCK = "mock"


class InvoicingMode(str, Enum):
    LIVE = "live"
    MOCK = "mock"
    DISABLED = "disabled"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class GatewayConfig:
    """Payment gateway connection.  Live mode needs every credential."""

    mode: GatewayMode
    base_url: str | None = None
    access_token: str | None = None
    webhook_secret: str | None = None
    api_version: str = "2015-07-06"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class InvoicingConfig:
    """Invoicing system connection.  Live mode needs the Moloni ids."""

    mode: InvoicingMode
    base_url: str | None = None
    access_token: str | None = None
    company_id: int | None = None
    document_set_id: int | None = None
    product_id: int | None = None
    tax_id: int | None = None
    sandbox: bool = False
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AppConfig:
    """Everything a process needs to build the services."""

    database: DatabaseConfig
    gateway: GatewayConfig
    invoicing: InvoicingConfig
    retry_sweep_secret: str
    retry_batch_size: int | None = None
    log_level: str = "INFO"
    checksum: str = ""
