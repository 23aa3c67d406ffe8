"""Persisted key/value settings (engagement policy overrides)."""

from datetime import datetime

from sqlalchemy import String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from autoserve.db.base import Base
from autoserve.db.enums import SettingValueType
from autoserve.db.models._helpers import enum_check
from autoserve.db.types import utcnow


class AppSetting(Base):
    __tablename__ = "app_settings"
    __table_args__ = (enum_check("value_type", SettingValueType, "ck_app_settings_value_type"),)

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    value_type: Mapped[str] = mapped_column(
        String(20), default=SettingValueType.STRING.value, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
