"""
Settings -- business policy values read from the ``settings`` table.

Responsibility:
    Parse the flat key/value mapping into an immutable ``Settings`` value.
    Absence of a key or an unparseable value is a configuration error; there
    are no silent defaults.

Architecture position:
    Kernel > Domain -- pure; the SettingsLoader service does the I/O.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from debit_kernel.exceptions import InvalidSettingError, MissingSettingError

SETTING_KEYS = (
    "max_unpaid_allowed",
    "max_retries",
    "retry_gap_days",
    "default_currency",
)


@dataclass(frozen=True)
class Settings:
    """
    Process-wide business policy, loaded fresh for every operation.

    Attributes:
        max_unpaid_allowed: A charge is rejected when the customer's count of
            FAILED payments is at or above this value.
        max_retries: Payments with attempts >= this value are never retried.
        retry_gap_days: Minimum days between a payment's gateway attempts.
        default_currency: ISO 4217 code stamped on new payments.
    """

    max_unpaid_allowed: int
    max_retries: int
    retry_gap_days: int
    default_currency: str


def _parse_non_negative_int(key: str, raw: str) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise InvalidSettingError(key, raw, "not an integer") from None
    if value < 0:
        raise InvalidSettingError(key, raw, "must be >= 0")
    return value


def parse_settings(raw: Mapping[str, str]) -> Settings:
    """Build Settings from a key/value mapping.

    Raises:
        MissingSettingError: A required key is absent.
        InvalidSettingError: A numeric value is not a non-negative integer,
            or the currency is not a 3-letter code.
    """
    for key in SETTING_KEYS:
        if key not in raw:
            raise MissingSettingError(key)

    currency = str(raw["default_currency"]).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise InvalidSettingError(
            "default_currency", raw["default_currency"], "not a 3-letter currency code"
        )

    return Settings(
        max_unpaid_allowed=_parse_non_negative_int(
            "max_unpaid_allowed", raw["max_unpaid_allowed"]
        ),
        max_retries=_parse_non_negative_int("max_retries", raw["max_retries"]),
        retry_gap_days=_parse_non_negative_int("retry_gap_days", raw["retry_gap_days"]),
        default_currency=currency,
    )
