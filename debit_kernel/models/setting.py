"""
Module: debit_kernel.models.setting
Responsibility: ORM persistence for operator-editable business settings as a
    flat key/value table.
Architecture position: Kernel > Models.  May import from db/base.py only.

Settings are re-read at the start of every operation, so an operator change
takes effect on the next charge or sweep without a restart.
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from debit_kernel.db.base import TimestampedBase


class Setting(TimestampedBase):
    """One business setting."""

    __tablename__ = "settings"

    __table_args__ = (
        UniqueConstraint("key", name="uq_setting_key"),
    )

    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    value: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value}>"
