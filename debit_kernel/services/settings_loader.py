"""
SettingsLoader -- reads business settings from the ``settings`` table.

Settings are read at the start of every operation and passed down as a
frozen value; nothing caches them across invocations.
"""

from dataclasses import asdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from debit_kernel.domain.settings import Settings, parse_settings
from debit_kernel.logging_config import get_logger
from debit_kernel.models.setting import Setting

logger = get_logger("services.settings_loader")


class SettingsLoader:
    """Loads and stores key/value settings within the caller's transaction."""

    def __init__(self, session: Session):
        self._session = session

    def load(self) -> Settings:
        """Parse the settings table.

        Raises:
            MissingSettingError / InvalidSettingError: see parse_settings.
        """
        rows = self._session.execute(select(Setting.key, Setting.value)).all()
        settings = parse_settings({key: value for key, value in rows})
        logger.debug("settings_loaded", extra=asdict(settings))
        return settings

    def put(self, key: str, value: object) -> None:
        """Insert or update one setting (operator and seeding use)."""
        row = self._session.execute(
            select(Setting).where(Setting.key == key)
        ).scalar_one_or_none()
        if row is None:
            self._session.add(Setting(key=key, value=str(value)))
        else:
            row.value = str(value)
        self._session.flush()
        logger.info("setting_updated", extra={"setting_key": key, "setting_value": str(value)})
