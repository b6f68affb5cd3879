import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.v1.auth import get_current_user
from talentloop.core.enums import TenantType
from talentloop.core.roles import RoleType, normalize_role
from talentloop.crud.roles import get_user_role
from talentloop.db.session import get_db
from talentloop.models.role import Role
from talentloop.models.tenant import Tenant
from talentloop.models.user import User


async def get_current_tenant(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Tenant:
    """
    The tenant always comes from the authenticated user. An X-Tenant-Id header
    naming any other tenant is rejected.
    """
    if x_tenant_id:
        try:
            requested = uuid.UUID(x_tenant_id)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="X-Tenant-Id must be a valid UUID",
            )
        if requested != user.tenant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "tenant_mismatch", "message": "Access to another tenant is not allowed."},
            )

    tenant = await db.get(Tenant, user.tenant_id)
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )
    return tenant


def require_tenant_type(tenant_type: TenantType):
    """
    Restrict a route to CANDIDATE or COMPANY tenants.
    """
    message = "This feature is available to candidates only" if tenant_type == TenantType.CANDIDATE else (
        "This feature is available to companies only"
    )

    async def _checker(tenant: Tenant = Depends(get_current_tenant)) -> Tenant:
        if tenant.type != tenant_type.value:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "tenant_type_forbidden", "message": message, "required": tenant_type.value},
            )
        return tenant

    return _checker


async def get_current_role(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(get_current_tenant),
) -> Optional[Role]:
    """
    Current non-expired role of the user in their tenant, or None.
    """
    found = await get_user_role(db, user.id, tenant.id)
    return found[1] if found else None


def require_tenant_roles(*allowed_roles: RoleType | str):
    """
    Enforce the caller's role is one of allowed_roles.
    """
    allowed = set()
    for r in allowed_roles:
        role = normalize_role(r)
        if role is None:
            raise ValueError(f"Unknown role {r!r}. Allowed: {[x.value for x in RoleType]}")
        allowed.add(role)

    async def _checker(role: Optional[Role] = Depends(get_current_role)) -> Role:
        current = normalize_role(role.name) if role else None
        if current not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "role_forbidden",
                    "message": "Insufficient role for this action.",
                    "role": current.value if current else None,
                    "allowed": sorted(r.value for r in allowed),
                },
            )
        return role

    return _checker
