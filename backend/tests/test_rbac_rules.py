# tests/test_rbac_rules.py
from __future__ import annotations

import pytest

from talentloop.auth.permissions import (
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    PERM,
    PERMISSION_MODULES,
    effective_permissions,
    is_permitted,
    split_permission,
)
from talentloop.core.roles import RoleType, can_assign, normalize_role, role_level


def test_every_permission_belongs_to_a_known_module():
    for name in ALL_PERMISSIONS:
        module, action = split_permission(name)
        assert module in PERMISSION_MODULES
        assert action


def test_split_permission_rejects_malformed_names():
    with pytest.raises(ValueError):
        split_permission("billing")


def test_default_grants():
    assert DEFAULT_ROLE_PERMISSIONS[RoleType.OWNER] == ALL_PERMISSIONS
    assert PERM.BILLING_MANAGE not in DEFAULT_ROLE_PERMISSIONS[RoleType.ADMIN]
    assert DEFAULT_ROLE_PERMISSIONS[RoleType.ADMIN] | {PERM.BILLING_MANAGE} == ALL_PERMISSIONS
    for role in (RoleType.MANAGER, RoleType.MEMBER, RoleType.VIEWER):
        assert DEFAULT_ROLE_PERMISSIONS[role] < ALL_PERMISSIONS


def test_effective_permissions_prefers_stored_grants():
    assert effective_permissions(role="viewer") == DEFAULT_ROLE_PERMISSIONS[RoleType.VIEWER]
    assert effective_permissions(role="VIEWER", granted=[" jobs:read ", ""]) == frozenset({"jobs:read"})
    assert effective_permissions(role=None) == frozenset()


def test_owner_is_always_permitted():
    assert is_permitted(role="OWNER", grants=frozenset(), required=PERM.BILLING_MANAGE)
    assert not is_permitted(role="ADMIN", grants=frozenset(), required=PERM.BILLING_MANAGE)


def test_module_wildcard_grants_every_action():
    grants = frozenset({"reports:*"})
    assert is_permitted(role="MEMBER", grants=grants, required=PERM.REPORTS_EXPORT)
    assert not is_permitted(role="MEMBER", grants=grants, required=PERM.JOBS_READ)


def test_role_hierarchy():
    assert normalize_role(" admin ") == RoleType.ADMIN
    assert normalize_role("root") is None
    assert [role_level(r) for r in RoleType] == [5, 4, 3, 2, 1]
    assert role_level(None) == 0


@pytest.mark.parametrize(
    "assigner, target, allowed",
    [
        ("OWNER", "ADMIN", True),
        ("OWNER", "VIEWER", True),
        ("OWNER", "OWNER", False),
        ("ADMIN", "MANAGER", True),
        ("ADMIN", "ADMIN", False),
        ("ADMIN", "OWNER", False),
        ("MANAGER", "VIEWER", False),
        ("MEMBER", "VIEWER", False),
        (None, "VIEWER", False),
    ],
)
def test_assignable_roles(assigner, target, allowed):
    assert can_assign(assigner, target) is allowed
