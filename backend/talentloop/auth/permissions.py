from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Mapping

from talentloop.core.roles import RoleType, normalize_role


@dataclass(frozen=True)
class Permission:
    # jobs:*
    JOBS_READ: str = "jobs:read"
    JOBS_WRITE: str = "jobs:write"
    JOBS_DELETE: str = "jobs:delete"

    # applications:*
    APPLICATIONS_READ: str = "applications:read"
    APPLICATIONS_WRITE: str = "applications:write"
    APPLICATIONS_DELETE: str = "applications:delete"

    # profile:*
    PROFILE_READ: str = "profile:read"
    PROFILE_WRITE: str = "profile:write"

    # users:*
    USERS_READ: str = "users:read"
    USERS_WRITE: str = "users:write"
    USERS_DELETE: str = "users:delete"
    USERS_MANAGE: str = "users:manage"

    # settings:*
    SETTINGS_READ: str = "settings:read"
    SETTINGS_WRITE: str = "settings:write"

    # billing:*
    BILLING_READ: str = "billing:read"
    BILLING_MANAGE: str = "billing:manage"

    # autoapply:*
    AUTOAPPLY_READ: str = "autoapply:read"
    AUTOAPPLY_WRITE: str = "autoapply:write"

    # recruiter:* (recruiter CRM)
    RECRUITER_READ: str = "recruiter:read"
    RECRUITER_WRITE: str = "recruiter:write"

    # reports:*
    REPORTS_READ: str = "reports:read"
    REPORTS_EXPORT: str = "reports:export"


PERM = Permission()

PERMISSION_MODULES: tuple[str, ...] = (
    "jobs",
    "applications",
    "profile",
    "users",
    "settings",
    "billing",
    "autoapply",
    "recruiter",
    "reports",
)

PERMISSION_DESCRIPTIONS: Mapping[str, str] = {
    PERM.JOBS_READ: "View jobs",
    PERM.JOBS_WRITE: "Create and edit jobs",
    PERM.JOBS_DELETE: "Delete jobs",
    PERM.APPLICATIONS_READ: "View applications",
    PERM.APPLICATIONS_WRITE: "Create and edit applications",
    PERM.APPLICATIONS_DELETE: "Delete applications",
    PERM.PROFILE_READ: "View profile",
    PERM.PROFILE_WRITE: "Edit profile",
    PERM.USERS_READ: "View team members",
    PERM.USERS_WRITE: "Create and edit users",
    PERM.USERS_DELETE: "Remove users",
    PERM.USERS_MANAGE: "Manage user roles",
    PERM.SETTINGS_READ: "View settings",
    PERM.SETTINGS_WRITE: "Edit settings",
    PERM.BILLING_READ: "View billing",
    PERM.BILLING_MANAGE: "Manage subscription",
    PERM.AUTOAPPLY_READ: "View AutoApply",
    PERM.AUTOAPPLY_WRITE: "Configure AutoApply",
    PERM.RECRUITER_READ: "View recruiter contacts",
    PERM.RECRUITER_WRITE: "Manage recruiter contacts",
    PERM.REPORTS_READ: "View reports",
    PERM.REPORTS_EXPORT: "Export reports",
}

ALL_PERMISSIONS: FrozenSet[str] = frozenset(PERMISSION_DESCRIPTIONS)

DEFAULT_ROLE_PERMISSIONS: Mapping[RoleType, FrozenSet[str]] = {
    RoleType.OWNER: ALL_PERMISSIONS,
    RoleType.ADMIN: ALL_PERMISSIONS - {PERM.BILLING_MANAGE},
    RoleType.MANAGER: frozenset(
        {
            PERM.JOBS_READ,
            PERM.APPLICATIONS_READ,
            PERM.APPLICATIONS_WRITE,
            PERM.PROFILE_READ,
            PERM.PROFILE_WRITE,
            PERM.USERS_READ,
            PERM.SETTINGS_READ,
            PERM.BILLING_READ,
            PERM.AUTOAPPLY_READ,
            PERM.AUTOAPPLY_WRITE,
            PERM.RECRUITER_READ,
            PERM.RECRUITER_WRITE,
            PERM.REPORTS_READ,
            PERM.REPORTS_EXPORT,
        }
    ),
    RoleType.MEMBER: frozenset(
        {
            PERM.JOBS_READ,
            PERM.JOBS_WRITE,
            PERM.APPLICATIONS_READ,
            PERM.APPLICATIONS_WRITE,
            PERM.PROFILE_READ,
            PERM.PROFILE_WRITE,
            PERM.AUTOAPPLY_READ,
            PERM.AUTOAPPLY_WRITE,
            PERM.RECRUITER_READ,
            PERM.RECRUITER_WRITE,
        }
    ),
    RoleType.VIEWER: frozenset(
        {
            PERM.JOBS_READ,
            PERM.APPLICATIONS_READ,
            PERM.PROFILE_READ,
            PERM.USERS_READ,
            PERM.SETTINGS_READ,
            PERM.BILLING_READ,
            PERM.AUTOAPPLY_READ,
            PERM.RECRUITER_READ,
            PERM.REPORTS_READ,
        }
    ),
}


def split_permission(name: str) -> tuple[str, str]:
    """
    "billing:manage" -> ("billing", "manage")
    """
    module, _, action = name.partition(":")
    if not module or not action:
        raise ValueError(f"Invalid permission name {name!r}; expected '<module>:<action>'")
    return module, action


def _normalize_grants(grants: Iterable[str] | None) -> FrozenSet[str]:
    if not grants:
        return frozenset()
    return frozenset(p.strip() for p in grants if isinstance(p, str) and p.strip())


def effective_permissions(*, role: str | None, granted: Iterable[str] | None = None) -> FrozenSet[str]:
    """
    Permissions stored for the role in the DB, or the built-in defaults when
    nothing was loaded (granted=None).
    """
    if granted is not None:
        return _normalize_grants(granted)
    r = normalize_role(role)
    return DEFAULT_ROLE_PERMISSIONS.get(r, frozenset()) if r else frozenset()


def _has_module_wildcard(grants: FrozenSet[str], required: str) -> bool:
    if required in grants:
        return True
    idx = required.find(":")
    if idx <= 0:
        return False
    return f"{required[:idx]}:*" in grants


def is_permitted(*, role: str | None, grants: FrozenSet[str], required: str) -> bool:
    """
    OWNER always allowed.
    """
    if normalize_role(role) == RoleType.OWNER:
        return True
    return _has_module_wildcard(grants, required)
