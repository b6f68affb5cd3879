# talentloop/crud/roles.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.auth.permissions import DEFAULT_ROLE_PERMISSIONS, PERMISSION_DESCRIPTIONS, split_permission
from talentloop.core.roles import ROLE_DESCRIPTIONS, RoleType, role_level
from talentloop.models.role import Permission, Role, RolePermission
from talentloop.models.user import User
from talentloop.models.user_role import UserRole


def _not_expired(now: Optional[datetime] = None):
    now = now or datetime.now(timezone.utc)
    return or_(UserRole.expires_at.is_(None), UserRole.expires_at > now)


# ---------------------------------------------------------
# Permission catalogue
# ---------------------------------------------------------
async def ensure_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Insert any missing permission rows. Returns name -> Permission.
    """
    res = await db.execute(select(Permission))
    existing = {p.name: p for p in res.scalars().all()}

    for name, description in PERMISSION_DESCRIPTIONS.items():
        if name in existing:
            continue
        module, action = split_permission(name)
        perm = Permission(name=name, module=module, action=action, description=description)
        db.add(perm)
        existing[name] = perm

    await db.flush()
    return existing


async def list_permissions(db: AsyncSession, module: Optional[str] = None) -> Sequence[Permission]:
    stmt = select(Permission).order_by(Permission.module.asc(), Permission.action.asc())
    if module:
        stmt = stmt.where(Permission.module == module.strip().lower())
    res = await db.execute(stmt)
    return res.scalars().all()


# ---------------------------------------------------------
# Roles
# ---------------------------------------------------------
async def list_roles(db: AsyncSession) -> Sequence[Role]:
    res = await db.execute(select(Role))
    roles = list(res.scalars().all())
    order = {r.value: i for i, r in enumerate(RoleType)}
    roles.sort(key=lambda r: order.get(r.name, len(order)))
    return roles


async def get_role_by_name(db: AsyncSession, name: RoleType) -> Optional[Role]:
    res = await db.execute(select(Role).where(Role.name == name.value))
    return res.scalar_one_or_none()


async def get_or_create_role(db: AsyncSession, name: RoleType) -> Role:
    """
    Roles are created lazily with their default permission set.
    """
    role = await get_role_by_name(db, name)
    if role is not None:
        return role

    role = Role(name=name.value, description=ROLE_DESCRIPTIONS[name])
    db.add(role)
    await db.flush()

    perms = await ensure_permissions(db)
    for perm_name in sorted(DEFAULT_ROLE_PERMISSIONS[name]):
        db.add(RolePermission(role_id=role.id, permission_id=perms[perm_name].id))
    await db.flush()
    return role


async def get_role_permission_names(db: AsyncSession, role_id: uuid.UUID) -> list[str]:
    stmt = (
        select(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.name.asc())
    )
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def replace_role_permissions(db: AsyncSession, role: Role, permission_ids: Iterable[uuid.UUID]) -> list[str]:
    """
    Overwrite the permission set of a role. Unknown ids raise LookupError.
    """
    wanted = set(permission_ids)
    if wanted:
        res = await db.execute(select(Permission).where(Permission.id.in_(wanted)))
        found = {p.id: p for p in res.scalars().all()}
        missing = wanted - set(found)
        if missing:
            raise LookupError(sorted(str(m) for m in missing))
    else:
        found = {}

    await db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
    for perm_id in found:
        db.add(RolePermission(role_id=role.id, permission_id=perm_id))
    await db.flush()
    return sorted(p.name for p in found.values())


# ---------------------------------------------------------
# User roles
# ---------------------------------------------------------
async def get_user_role(
    db: AsyncSession,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
) -> Optional[tuple[UserRole, Role]]:
    """
    Current (non-expired) role of a user in a tenant, highest first.
    """
    stmt = (
        select(UserRole, Role)
        .join(Role, Role.id == UserRole.role_id)
        .where(UserRole.user_id == user_id)
        .where(UserRole.tenant_id == tenant_id)
        .where(_not_expired())
    )
    rows = (await db.execute(stmt)).all()
    if not rows:
        return None

    best = max(rows, key=lambda row: role_level(row[1].name))
    return best[0], best[1]


async def assign_role(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    tenant_id: uuid.UUID,
    role: RoleType,
    assigned_by: Optional[uuid.UUID] = None,
    expires_at: Optional[datetime] = None,
) -> tuple[UserRole, Role]:
    """
    A user holds one role per tenant: previous assignments are replaced.
    """
    role_row = await get_or_create_role(db, role)
    await remove_user_roles(db, user_id=user_id, tenant_id=tenant_id)

    user_role = UserRole(
        user_id=user_id,
        role_id=role_row.id,
        tenant_id=tenant_id,
        assigned_by=assigned_by,
        expires_at=expires_at,
    )
    db.add(user_role)
    await db.flush()
    return user_role, role_row


async def remove_user_roles(db: AsyncSession, *, user_id: uuid.UUID, tenant_id: uuid.UUID) -> int:
    res = await db.execute(
        delete(UserRole).where(UserRole.user_id == user_id, UserRole.tenant_id == tenant_id)
    )
    return int(res.rowcount or 0)


async def list_team(db: AsyncSession, tenant_id: uuid.UUID) -> list[tuple[User, Optional[UserRole], Optional[Role]]]:
    """
    Every non-deleted user of the tenant with their current role (if any).
    """
    users_res = await db.execute(
        select(User)
        .where(User.tenant_id == tenant_id)
        .where(User.deleted_at.is_(None))
        .order_by(User.created_at.asc())
    )
    users = users_res.scalars().all()

    roles_res = await db.execute(
        select(UserRole, Role)
        .join(Role, Role.id == UserRole.role_id)
        .where(UserRole.tenant_id == tenant_id)
        .where(_not_expired())
    )
    by_user: dict[uuid.UUID, tuple[UserRole, Role]] = {}
    for user_role, role in roles_res.all():
        by_user[user_role.user_id] = (user_role, role)

    team = []
    for user in users:
        user_role, role = by_user.get(user.id, (None, None))
        team.append((user, user_role, role))
    return team
