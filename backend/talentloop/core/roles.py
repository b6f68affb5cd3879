# talentloop/core/roles.py

import enum


class RoleType(str, enum.Enum):
    OWNER = "OWNER"      # account creator, billing included
    ADMIN = "ADMIN"      # users and settings, no billing management
    MANAGER = "MANAGER"  # reports and limited settings
    MEMBER = "MEMBER"    # day-to-day features
    VIEWER = "VIEWER"    # read-only


ROLE_HIERARCHY: dict[RoleType, int] = {
    RoleType.OWNER: 5,
    RoleType.ADMIN: 4,
    RoleType.MANAGER: 3,
    RoleType.MEMBER: 2,
    RoleType.VIEWER: 1,
}

ROLE_DESCRIPTIONS: dict[RoleType, str] = {
    RoleType.OWNER: "Full access, including billing and account deletion",
    RoleType.ADMIN: "Manages users and settings, no billing management",
    RoleType.MANAGER: "Access to reports and limited settings",
    RoleType.MEMBER: "Basic access to platform features",
    RoleType.VIEWER: "Read-only access",
}

# Which roles each role may hand out.
ASSIGNABLE_ROLES: dict[RoleType, frozenset[RoleType]] = {
    RoleType.OWNER: frozenset({RoleType.ADMIN, RoleType.MANAGER, RoleType.MEMBER, RoleType.VIEWER}),
    RoleType.ADMIN: frozenset({RoleType.MANAGER, RoleType.MEMBER, RoleType.VIEWER}),
    RoleType.MANAGER: frozenset(),
    RoleType.MEMBER: frozenset(),
    RoleType.VIEWER: frozenset(),
}


def normalize_role(value: str | RoleType | None) -> RoleType | None:
    if value is None:
        return None
    if isinstance(value, RoleType):
        return value
    try:
        return RoleType(value.strip().upper())
    except ValueError:
        return None


def role_level(role: str | RoleType | None) -> int:
    r = normalize_role(role)
    return ROLE_HIERARCHY.get(r, 0) if r else 0


def can_assign(assigner: str | RoleType | None, target: str | RoleType | None) -> bool:
    a = normalize_role(assigner)
    t = normalize_role(target)
    if a is None or t is None:
        return False
    return t in ASSIGNABLE_ROLES[a]
