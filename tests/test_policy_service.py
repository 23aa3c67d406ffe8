"""Tests for engagement policy loading and overrides."""

import pytest
from pydantic import ValidationError

from autoserve.core.config import Settings
from autoserve.db.models import AppSetting
from autoserve.services import policy_service
from autoserve.services.policy_service import EngagementPolicy, PolicyStore


def test_policy_from_settings():
    config = Settings(COMPLIMENTARY_DIAGNOSES=1, ALLOW_LIMITED_PREVIEW_LEADS=False)

    policy = policy_service.policy_from_settings(config)

    assert policy.complimentary_diagnoses == 1
    assert policy.allow_limited_preview_leads is False


def test_policy_is_immutable():
    policy = EngagementPolicy()

    with pytest.raises(ValidationError):
        policy.complimentary_leads = 50


def test_rejects_negative_limits():
    with pytest.raises(ValidationError):
        EngagementPolicy(complimentary_diagnoses=-1)


def test_overrides_applied_on_load(db):
    policy_service.set_override(db, "complimentary_leads", 12)
    policy_service.set_override(db, "allow_limited_preview_leads", False)

    policy = policy_service.load_policy(db, base=EngagementPolicy())

    assert policy.complimentary_leads == 12
    assert policy.allow_limited_preview_leads is False
    assert db.get(AppSetting, "allow_limited_preview_leads").value == "false"


def test_set_override_updates_existing_row(db):
    policy_service.set_override(db, "max_matched_providers", 4)
    policy_service.set_override(db, "max_matched_providers", 6)

    assert policy_service.load_policy(db, base=EngagementPolicy()).max_matched_providers == 6


def test_unknown_key_rejected(db):
    with pytest.raises(ValueError):
        policy_service.set_override(db, "free_lunches", 3)


def test_invalid_override_falls_back_to_base(db):
    policy_service.set_override(db, "complimentary_leads", -5)
    base = EngagementPolicy(complimentary_leads=7)

    assert policy_service.load_policy(db, base=base) == base


def test_unparsable_override_ignored(db):
    db.add(AppSetting(key="complimentary_leads", value="lots", value_type="integer"))
    db.flush()

    assert policy_service.load_policy(db, base=EngagementPolicy()).complimentary_leads == 5


def test_store_reload_replaces_policy(db):
    store = PolicyStore(EngagementPolicy(complimentary_diagnoses=9))
    policy_service.set_override(db, "complimentary_diagnoses", 2)

    reloaded = store.reload(db)

    assert reloaded.complimentary_diagnoses == 2
    assert store.current is reloaded
