"""
debit_config -- single public entrypoint for process configuration.

Responsibility:
    ``get_active_config()`` is the only way services, scripts and tests
    obtain connection settings and credentials.  No other component reads
    configuration files or ``DEBIT_*`` environment variables.

Architecture position:
    Configuration -- sits above ``debit_kernel`` and below
    ``debit_services``.  The kernel never imports from ``debit_config``.

Failure modes:
    - ``ConfigurationError`` -- no file, malformed YAML, or a missing or
      invalid key.

Audit relevance:
    Every successful call emits a ``DEBIT_CONFIG_TRACE`` log entry with the
    gateway and invoicing modes and a checksum of the non-secret settings.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from debit_config.loader import (
    CONFIG_PATH_ENV,
    apply_env_overrides,
    load_yaml_file,
    parse_config,
)
from debit_config.schema import (
    AppConfig,
    DatabaseConfig,
    GatewayConfig,
    GatewayMode,
    InvoicingConfig,
    InvoicingMode,
)
from debit_kernel.exceptions import ConfigurationError

_logger = logging.getLogger("debit_kernel.config")


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the file named by
            ``DEBIT_CONFIG``.
        environ: Environment to read overrides from.  Defaults to
            ``os.environ``.

    Raises:
        ConfigurationError: No file given, or the file is invalid.
    """
    env = os.environ if environ is None else environ
    config_path = path or env.get(CONFIG_PATH_ENV)
    if not config_path:
        raise ConfigurationError(
            f"No configuration file: pass a path or set {CONFIG_PATH_ENV}"
        )

    data = apply_env_overrides(load_yaml_file(Path(config_path)), env)
    config = parse_config(data)

    _logger.info(
        "DEBIT_CONFIG_TRACE",
        extra={
            "trace_type": "DEBIT_CONFIG_TRACE",
            "config_path": str(config_path),
            "checksum": config.checksum,
            "gateway_mode": config.gateway.mode.value,
            "invoicing_mode": config.invoicing.mode.value,
        },
    )
    return config


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "GatewayConfig",
    "GatewayMode",
    "InvoicingConfig",
    "InvoicingMode",
    "get_active_config",
]
