from __future__ import annotations

from typing import Callable, Optional, Sequence

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.deps.tenant import get_current_role
from talentloop.auth.permissions import effective_permissions, is_permitted
from talentloop.core.roles import RoleType
from talentloop.crud.roles import get_role_permission_names
from talentloop.db.session import get_db
from talentloop.models.role import Role


async def load_role_grants(db: AsyncSession, role: Optional[Role]) -> frozenset[str]:
    if role is None:
        return frozenset()
    return effective_permissions(role=role.name, granted=await get_role_permission_names(db, role.id))


async def check_permissions(
    db: AsyncSession,
    role: Optional[Role],
    required: Sequence[str],
    *,
    any_of: bool = False,
) -> Role:
    """
    Raise 403 unless role grants the required permissions. OWNER always passes.
    """
    required_list = list(required)

    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "rbac_role_missing", "message": "No role assigned in this tenant."},
        )

    if role.name == RoleType.OWNER.value:
        return role

    grants = await load_role_grants(db, role)

    checks = [is_permitted(role=role.name, grants=grants, required=p) for p in required_list]
    allowed = any(checks) if any_of else all(checks)

    if not allowed:
        missing = [p for p, ok in zip(required_list, checks) if not ok]
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "rbac_forbidden",
                "message": "You do not have permission to perform this action.",
                "required": required_list,
                "missing": missing,
                "role": role.name,
            },
        )

    return role


def require_permissions(
    required: str | Sequence[str],
    *,
    any_of: bool = False,
) -> Callable:
    """
    Enforce RBAC permissions using:
      - get_current_role()
      - the role's permission rows (role_permissions)
      - OWNER always has all permissions

    Args:
      required: permission string OR list of permissions
      any_of: True => any required perm passes; False => all required perms required
    """
    required_list = [required] if isinstance(required, str) else list(required)

    async def _checker(
        db: AsyncSession = Depends(get_db),
        role: Optional[Role] = Depends(get_current_role),
    ) -> Role:
        return await check_permissions(db, role, required_list, any_of=any_of)

    return _checker
