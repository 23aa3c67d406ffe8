"""Engagement policy: configuration-derived limits with persisted overrides.

The policy is built from Settings at startup and overlaid with rows from
``app_settings``. It only changes through ``PolicyStore.reload``.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from autoserve.core.config import Settings, settings as default_settings
from autoserve.db.enums import SettingValueType
from autoserve.db.models import AppSetting

logger = logging.getLogger(__name__)


class EngagementPolicy(BaseModel):
    """Immutable snapshot of tunable engagement rules."""

    model_config = ConfigDict(frozen=True)

    complimentary_diagnoses: int = Field(default=3, ge=0)
    complimentary_leads: int = Field(default=5, ge=0)
    max_matched_providers: int = Field(default=10, ge=1)
    allow_limited_preview_leads: bool = True
    default_appointment_duration_minutes: int = Field(default=60, ge=1)
    default_currency: str = Field(default="GHS", min_length=3, max_length=3)
    auto_dispatch_leads: bool = True


def policy_from_settings(config: Settings | None = None) -> EngagementPolicy:
    config = config or default_settings
    return EngagementPolicy(
        complimentary_diagnoses=config.COMPLIMENTARY_DIAGNOSES,
        complimentary_leads=config.COMPLIMENTARY_LEADS,
        max_matched_providers=config.MAX_MATCHED_PROVIDERS,
        allow_limited_preview_leads=config.ALLOW_LIMITED_PREVIEW_LEADS,
        default_appointment_duration_minutes=config.DEFAULT_APPOINTMENT_DURATION_MINUTES,
        default_currency=config.DEFAULT_CURRENCY,
        auto_dispatch_leads=config.AUTO_DISPATCH_LEADS,
    )


def _parse_value(raw: str, value_type: str) -> Any:
    if value_type == SettingValueType.INTEGER.value:
        return int(raw)
    if value_type == SettingValueType.BOOLEAN.value:
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return raw


def _value_type_for(value: Any) -> SettingValueType:
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return SettingValueType.BOOLEAN
    if isinstance(value, int):
        return SettingValueType.INTEGER
    return SettingValueType.STRING


def load_policy(db: Session, base: EngagementPolicy | None = None) -> EngagementPolicy:
    """Overlay persisted overrides on top of the settings-derived policy."""
    base = base or policy_from_settings()
    overrides: dict[str, Any] = {}
    rows = db.query(AppSetting).filter(AppSetting.key.in_(list(EngagementPolicy.model_fields))).all()
    for row in rows:
        try:
            overrides[row.key] = _parse_value(row.value, row.value_type)
        except ValueError:
            logger.warning("Ignoring unparsable policy override %s", row.key)

    if not overrides:
        return base
    try:
        return EngagementPolicy.model_validate({**base.model_dump(), **overrides})
    except ValidationError:
        logger.exception("Persisted policy overrides are invalid; using configured defaults")
        return base


def set_override(db: Session, key: str, value: Any) -> AppSetting:
    """Persist a policy override. Takes effect on the next reload."""
    if key not in EngagementPolicy.model_fields:
        raise ValueError(f"Unknown policy key: {key}")
    value_type = _value_type_for(value)
    raw = str(value).lower() if value_type == SettingValueType.BOOLEAN else str(value)

    row = db.get(AppSetting, key)
    if row is None:
        row = AppSetting(key=key, value=raw, value_type=value_type.value)
        db.add(row)
    else:
        row.value = raw
        row.value_type = value_type.value
    db.flush()
    return row


class PolicyStore:
    """Holds the current policy; replaced wholesale on reload."""

    def __init__(self, policy: EngagementPolicy | None = None):
        self._policy = policy or policy_from_settings()

    @property
    def current(self) -> EngagementPolicy:
        return self._policy

    def reload(self, db: Session) -> EngagementPolicy:
        self._policy = load_policy(db, base=policy_from_settings())
        logger.info("Engagement policy reloaded")
        return self._policy


policy_store = PolicyStore()
