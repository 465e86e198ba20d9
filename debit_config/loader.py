"""
Configuration Loader (``debit_config.loader``).

Responsibility
--------------
Reads one YAML file, overlays ``DEBIT_*`` environment variables, and parses
the result into the frozen ``debit_config.schema`` dataclasses.  Runtime
callers use ``debit_config.get_active_config()`` instead of this module.

Environment overrides
---------------------
``DEBIT_<SECTION>_<KEY>`` sets ``<section>.<key>`` for the sections
``database``, ``gateway`` and ``invoicing``; ``DEBIT_<KEY>`` sets a
top-level key (``DEBIT_RETRY_SWEEP_SECRET``).  ``DEBIT_CONFIG`` names the
file and is not an override.  Values arrive as strings and are coerced by
the parser.

Failure modes
-------------
* Missing file  -> ``ConfigurationError``.
* Malformed YAML  -> ``ConfigurationError`` (wrapping ``yaml.YAMLError``).
* Missing required key or bad value  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from debit_config.schema import (
    AppConfig,
    DatabaseConfig,
    GatewayConfig,
    GatewayMode,
    InvoicingConfig,
    InvoicingMode,
)
from debit_kernel.exceptions import ConfigurationError

ENV_PREFIX = "DEBIT_"
CONFIG_PATH_ENV = "DEBIT_CONFIG"
SECTIONS = ("database", "gateway", "invoicing")

# Keys left out of the checksum so it can be logged.
_SECRET_KEYS = frozenset({"access_token", "webhook_secret", "retry_sweep_secret", "url"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; an empty file is an empty mapping."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration root in {path} must be a mapping")
    return data


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Return a copy of *data* with ``DEBIT_*`` variables applied."""
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX) or name == CONFIG_PATH_ENV:
            continue
        key = name[len(ENV_PREFIX):].lower()
        for section in SECTIONS:
            if key.startswith(section + "_"):
                merged.setdefault(section, {})
                merged[section][key[len(section) + 1:]] = value
                break
        else:
            merged[key] = value
    return merged


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name)
    if section is None:
        raise ConfigurationError(f"Missing configuration section: {name}")
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section {name} must be a mapping")
    return section


def _required(section: dict[str, Any], key: str, where: str) -> Any:
    value = section.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"Missing required configuration key: {where}.{key}")
    return value


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "on"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no", "off"):
        return False
    raise ConfigurationError(f"{where} must be a boolean, got {value!r}")


def _as_int(value: Any, where: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigurationError(f"{where} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{where} must be an integer, got {value!r}") from exc


def _as_float(value: Any, where: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{where} must be a number, got {value!r}") from exc


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    section = _section(data, "database")
    return DatabaseConfig(
        url=str(_required(section, "url", "database")),
        echo=_as_bool(section.get("echo", False), "database.echo"),
        pool_size=_as_int(section.get("pool_size", 20), "database.pool_size"),
        max_overflow=_as_int(section.get("max_overflow", 10), "database.max_overflow"),
    )


def parse_gateway(data: dict[str, Any]) -> GatewayConfig:
    section = _section(data, "gateway")
    try:
        mode = GatewayMode(str(_required(section, "mode", "gateway")).lower())
    except ValueError as exc:
        raise ConfigurationError(
            f"gateway.mode must be one of {[m.value for m in GatewayMode]}"
        ) from exc

    if mode == GatewayMode.LIVE:
        for key in ("base_url", "access_token", "webhook_secret"):
            _required(section, key, "gateway")

    return GatewayConfig(
        mode=mode,
        base_url=section.get("base_url"),
        access_token=section.get("access_token"),
        webhook_secret=section.get("webhook_secret"),
        api_version=str(section.get("api_version", "2015-07-06")),
        timeout_seconds=_as_float(section.get("timeout_seconds", 30.0), "gateway.timeout_seconds"),
    )


def parse_invoicing(data: dict[str, Any]) -> InvoicingConfig:
    section = data.get("invoicing") or {"mode": InvoicingMode.DISABLED.value}
    if not isinstance(section, dict):
        raise ConfigurationError("Configuration section invoicing must be a mapping")
    try:
        mode = InvoicingMode(str(section.get("mode", "disabled")).lower())
    except ValueError as exc:
        raise ConfigurationError(
            f"invoicing.mode must be one of {[m.value for m in InvoicingMode]}"
        ) from exc

    if mode == InvoicingMode.LIVE:
        for key in ("base_url", "access_token", "company_id", "document_set_id", "product_id", "tax_id"):
            _required(section, key, "invoicing")

    return InvoicingConfig(
        mode=mode,
        base_url=section.get("base_url"),
        access_token=section.get("access_token"),
        company_id=_as_int(section.get("company_id"), "invoicing.company_id"),
        document_set_id=_as_int(section.get("document_set_id"), "invoicing.document_set_id"),
        product_id=_as_int(section.get("product_id"), "invoicing.product_id"),
        tax_id=_as_int(section.get("tax_id"), "invoicing.tax_id"),
        sandbox=_as_bool(section.get("sandbox", False), "invoicing.sandbox"),
        timeout_seconds=_as_float(
            section.get("timeout_seconds", 30.0), "invoicing.timeout_seconds"
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the configuration with secrets removed."""

    def scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: scrub(v) for k, v in value.items() if k not in _SECRET_KEYS}
        return value

    canonical = json.dumps(scrub(data), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse a merged configuration mapping into an AppConfig."""
    batch_size = _as_int(data.get("retry_batch_size"), "retry_batch_size")
    if batch_size is not None and batch_size <= 0:
        raise ConfigurationError("retry_batch_size must be positive")
    return AppConfig(
        database=parse_database(data),
        gateway=parse_gateway(data),
        invoicing=parse_invoicing(data),
        retry_sweep_secret=str(_required(data, "retry_sweep_secret", "root")),
        retry_batch_size=batch_size,
        log_level=str(data.get("log_level", "INFO")).upper(),
        checksum=compute_checksum(data),
    )
