# tests/test_plan_rules.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from talentloop.core.enums import SubStatus, TenantType
from talentloop.core.plans import (
    PLAN_CATALOG,
    get_plan_features,
    get_plan_level,
    is_upgrade,
    normalize_plan_name,
    plan_belongs_to,
    plan_names_for_tenant_type,
)
from talentloop.core.subscription_status import (
    expiry_for_billing_period,
    extend_expiry_for_upgrade,
    is_subscription_valid,
    map_stripe_status,
    resolve_history_status,
    resolve_plan_info_status,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def sub(status: str = "ACTIVE", expires_at=None):
    return SimpleNamespace(status=status, expires_at=expires_at)


def test_catalogue_has_six_plans_split_by_tenant_type():
    assert set(PLAN_CATALOG) == {"FREE", "PRO", "PREMIUM", "STARTUP", "BUSINESS", "ENTERPRISE"}
    assert plan_names_for_tenant_type(TenantType.CANDIDATE) == ("FREE", "PRO", "PREMIUM")
    assert plan_names_for_tenant_type("company") == ("STARTUP", "BUSINESS", "ENTERPRISE")


def test_plan_levels_order_upgrades():
    assert normalize_plan_name(" pro ") == "PRO"
    assert get_plan_level("FREE") < get_plan_level("pro") < get_plan_level("PREMIUM")
    assert get_plan_level("STARTUP") < get_plan_level("BUSINESS") < get_plan_level("ENTERPRISE")
    assert get_plan_level("GOLD") == 0
    assert is_upgrade("FREE", "PRO")
    assert not is_upgrade("PREMIUM", "PRO")
    assert not is_upgrade("PRO", "PRO")


def test_plans_do_not_cross_tenant_types():
    assert plan_belongs_to("pro", TenantType.CANDIDATE)
    assert not plan_belongs_to("PRO", TenantType.COMPANY)
    assert not plan_belongs_to("BUSINESS", "CANDIDATE")


def test_features_come_from_the_catalogue():
    assert "Everything in Pro" in get_plan_features("premium")
    assert get_plan_features("unknown") == []


def test_subscription_validity():
    assert is_subscription_valid(sub(expires_at=None), NOW)
    assert is_subscription_valid(sub(expires_at=NOW + timedelta(days=1)), NOW)
    assert not is_subscription_valid(sub(expires_at=NOW - timedelta(seconds=1)), NOW)
    assert not is_subscription_valid(sub(status=SubStatus.PAST_DUE.value), NOW)
    assert not is_subscription_valid(None, NOW)


def test_naive_expiry_is_read_as_utc():
    naive = (NOW + timedelta(hours=1)).replace(tzinfo=None)
    assert is_subscription_valid(sub(expires_at=naive), NOW)


def test_status_views():
    assert resolve_history_status(sub(status="CANCELED", expires_at=NOW + timedelta(days=3)), NOW) == "CANCELED"
    assert resolve_plan_info_status(sub(status="CANCELED"), NOW) == "CANCELLED"
    assert resolve_history_status(sub(expires_at=NOW - timedelta(days=1)), NOW) == "EXPIRED"
    assert resolve_history_status(sub(expires_at=NOW + timedelta(days=1)), NOW) == "ACTIVE"


def test_upgrade_keeps_remaining_time():
    assert extend_expiry_for_upgrade(NOW + timedelta(days=10), NOW) == NOW + timedelta(days=40)
    assert extend_expiry_for_upgrade(None, NOW) == NOW + timedelta(days=30)


def test_billing_period_expiry():
    assert expiry_for_billing_period(0, NOW) is None
    assert expiry_for_billing_period(None, NOW) is None
    assert expiry_for_billing_period(30, NOW) == NOW + timedelta(days=30)


@pytest.mark.parametrize(
    "stripe_status, expected",
    [
        ("active", SubStatus.ACTIVE),
        ("past_due", SubStatus.PAST_DUE),
        ("canceled", SubStatus.CANCELED),
        ("unpaid", SubStatus.CANCELED),
        ("incomplete_expired", SubStatus.EXPIRED),
        ("trialing", SubStatus.CANCELED),
        (None, SubStatus.CANCELED),
    ],
)
def test_stripe_status_mapping(stripe_status, expected):
    assert map_stripe_status(stripe_status) == expected
