# backend/talentloop/api/v1/roles.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.deps.permissions import load_role_grants
from talentloop.api.deps.tenant import get_current_role, require_tenant_roles, require_tenant_type
from talentloop.api.v1.auth import get_current_user
from talentloop.core.enums import TenantType
from talentloop.core.logging import get_logger
from talentloop.core.roles import RoleType, can_assign, normalize_role, role_level
from talentloop.crud import roles as roles_crud
from talentloop.db.session import get_db
from talentloop.models.role import Role
from talentloop.models.tenant import Tenant
from talentloop.models.user import User
from talentloop.models.user_role import UserRole
from talentloop.schemas.roles import (
    AssignRoleRequest,
    ChangeRoleRequest,
    MyPermissionsResponse,
    PermissionOut,
    RemoveRoleRequest,
    RoleOut,
    TeamMember,
    UpdateRolePermissionsRequest,
    UserRoleOut,
)

router = APIRouter(
    prefix="/roles",
    tags=["roles"],
    dependencies=[Depends(require_tenant_type(TenantType.COMPANY))],
)

logger = get_logger(__name__)

OWNER_OR_ADMIN = (RoleType.OWNER, RoleType.ADMIN)


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": "role_forbidden", "message": message})


def _user_role_out(user_id: uuid.UUID, tenant_id: uuid.UUID, found: Optional[tuple[UserRole, Role]]) -> UserRoleOut:
    if not found:
        return UserRoleOut(user_id=user_id, tenant_id=tenant_id)
    user_role, role = found
    return UserRoleOut(
        user_id=user_id,
        tenant_id=tenant_id,
        role=role.name,
        level=role_level(role.name),
        assigned_at=user_role.assigned_at,
        assigned_by=user_role.assigned_by,
        expires_at=user_role.expires_at,
    )


async def _tenant_member(db: AsyncSession, user_id: uuid.UUID, tenant: Tenant) -> User:
    target = await db.get(User, user_id)
    if not target or target.tenant_id != tenant.id or target.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found in this tenant")
    return target


# ---------------------------------------------------------
# Catalogue
# ---------------------------------------------------------
@router.get("", response_model=list[RoleOut])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    _: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
) -> list[RoleOut]:
    out = []
    for role in await roles_crud.list_roles(db):
        out.append(
            RoleOut(
                id=role.id,
                name=role.name,
                description=role.description,
                level=role_level(role.name),
                permissions=await roles_crud.get_role_permission_names(db, role.id),
            )
        )
    return out


@router.get("/permissions", response_model=list[PermissionOut])
async def list_permissions(
    db: AsyncSession = Depends(get_db),
    _: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
):
    return [PermissionOut.model_validate(p, from_attributes=True) for p in await roles_crud.list_permissions(db)]


@router.get("/permissions/{module}", response_model=list[PermissionOut])
async def list_module_permissions(
    module: str,
    db: AsyncSession = Depends(get_db),
    _: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
):
    perms = await roles_crud.list_permissions(db, module=module)
    return [PermissionOut.model_validate(p, from_attributes=True) for p in perms]


@router.patch("/{role_id}/permissions", response_model=RoleOut)
async def update_role_permissions(
    role_id: uuid.UUID,
    payload: UpdateRolePermissionsRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _: Role = Depends(require_tenant_roles(RoleType.OWNER)),
) -> RoleOut:
    """
    Replace the permission set of a role. Role rows are shared by all tenants.
    """
    role = await db.get(Role, role_id)
    if not role:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")

    try:
        names = await roles_crud.replace_role_permissions(db, role, payload.permission_ids)
    except LookupError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "unknown_permissions", "message": "Unknown permission ids", "ids": e.args[0]},
        )
    await db.commit()

    logger.info("role_permissions_updated", role=role.name, permissions=len(names), by=str(user.id))
    return RoleOut(id=role.id, name=role.name, description=role.description, level=role_level(role.name), permissions=names)


# ---------------------------------------------------------
# Team
# ---------------------------------------------------------
@router.get("/team", response_model=list[TeamMember])
async def team(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
    _: Role = Depends(require_tenant_roles(RoleType.OWNER, RoleType.ADMIN, RoleType.MANAGER)),
) -> list[TeamMember]:
    members = []
    for member, user_role, role in await roles_crud.list_team(db, tenant.id):
        members.append(
            TeamMember(
                id=member.id,
                name=member.name,
                email=member.email,
                is_active=member.is_active,
                role=role.name if role else None,
                assigned_at=user_role.assigned_at if user_role else None,
                expires_at=user_role.expires_at if user_role else None,
            )
        )
    return members


@router.get("/my-role", response_model=UserRoleOut)
async def my_role(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
) -> UserRoleOut:
    found = await roles_crud.get_user_role(db, user.id, tenant.id)
    return _user_role_out(user.id, tenant.id, found)


@router.get("/my-permissions", response_model=MyPermissionsResponse)
async def my_permissions(
    db: AsyncSession = Depends(get_db),
    role: Optional[Role] = Depends(get_current_role),
) -> MyPermissionsResponse:
    grants = await load_role_grants(db, role)
    return MyPermissionsResponse(role=role.name if role else None, permissions=sorted(grants))


@router.get("/user/{user_id}", response_model=UserRoleOut)
async def user_role(
    user_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
    _: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
) -> UserRoleOut:
    await _tenant_member(db, user_id, tenant)
    found = await roles_crud.get_user_role(db, user_id, tenant.id)
    return _user_role_out(user_id, tenant.id, found)


# ---------------------------------------------------------
# Assignment
# ---------------------------------------------------------
@router.post("/assign", response_model=UserRoleOut, status_code=status.HTTP_201_CREATED)
async def assign(
    payload: AssignRoleRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
    caller_role: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
) -> UserRoleOut:
    if not can_assign(caller_role.name, payload.role):
        raise _forbidden(f"{caller_role.name} cannot assign the {payload.role.value} role")

    await _tenant_member(db, payload.user_id, tenant)

    found = await roles_crud.assign_role(
        db,
        user_id=payload.user_id,
        tenant_id=tenant.id,
        role=payload.role,
        assigned_by=user.id,
        expires_at=payload.expires_at,
    )
    await db.commit()

    logger.info("role_assigned", tenant_id=str(tenant.id), user_id=str(payload.user_id), role=payload.role.value)
    return _user_role_out(payload.user_id, tenant.id, found)


@router.patch("/change", response_model=UserRoleOut)
async def change(
    payload: ChangeRoleRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
    caller_role: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
) -> UserRoleOut:
    if payload.user_id == user.id:
        raise _forbidden("You cannot change your own role")

    caller = normalize_role(caller_role.name)
    if caller == RoleType.ADMIN and payload.new_role == RoleType.OWNER:
        raise _forbidden("Only the owner can grant the OWNER role")

    await _tenant_member(db, payload.user_id, tenant)
    current = await roles_crud.get_user_role(db, payload.user_id, tenant.id)
    if caller == RoleType.ADMIN and current and current[1].name == RoleType.OWNER.value:
        raise _forbidden("An admin cannot change the owner's role")

    found = await roles_crud.assign_role(
        db,
        user_id=payload.user_id,
        tenant_id=tenant.id,
        role=payload.new_role,
        assigned_by=user.id,
    )
    await db.commit()

    logger.info(
        "role_changed",
        tenant_id=str(tenant.id),
        user_id=str(payload.user_id),
        previous=current[1].name if current else None,
        role=payload.new_role.value,
    )
    return _user_role_out(payload.user_id, tenant.id, found)


@router.delete("/remove", status_code=status.HTTP_204_NO_CONTENT)
async def remove(
    payload: RemoveRoleRequest = Body(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    tenant: Tenant = Depends(require_tenant_type(TenantType.COMPANY)),
    caller_role: Role = Depends(require_tenant_roles(*OWNER_OR_ADMIN)),
) -> Response:
    if payload.user_id == user.id:
        raise _forbidden("You cannot remove your own role")

    await _tenant_member(db, payload.user_id, tenant)
    current = await roles_crud.get_user_role(db, payload.user_id, tenant.id)
    if (
        normalize_role(caller_role.name) == RoleType.ADMIN
        and current
        and current[1].name == RoleType.OWNER.value
    ):
        raise _forbidden("An admin cannot remove the owner")

    removed = await roles_crud.remove_user_roles(db, user_id=payload.user_id, tenant_id=tenant.id)
    await db.commit()

    logger.info("role_removed", tenant_id=str(tenant.id), user_id=str(payload.user_id), rows=removed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
