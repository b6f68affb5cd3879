# talentloop/crud/users.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core.roles import RoleType
from talentloop.models.role import Role
from talentloop.models.user import User
from talentloop.models.user_role import UserRole


async def get_user_by_email(db: AsyncSession, tenant_id: uuid.UUID, email: str) -> Optional[User]:
    stmt = select(User).where(User.tenant_id == tenant_id, User.email == User.normalize_email(email))
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def email_exists_anywhere(db: AsyncSession, email: str) -> bool:
    stmt = select(func.count(User.id)).where(User.email == User.normalize_email(email))
    res = await db.execute(stmt)
    return int(res.scalar() or 0) > 0


async def count_active_users(db: AsyncSession, tenant_id: uuid.UUID) -> int:
    """
    Counts users that occupy a seat: active and not soft-deleted.
    """
    stmt = (
        select(func.count(User.id))
        .where(User.tenant_id == tenant_id)
        .where(User.is_active.is_(True))
        .where(User.deleted_at.is_(None))
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def get_tenant_contact(db: AsyncSession, tenant_id: uuid.UUID) -> Optional[User]:
    """
    Who receives account emails for a tenant: the OWNER when there is one,
    otherwise the oldest active user.
    """
    owner_stmt = (
        select(User)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .where(UserRole.tenant_id == tenant_id)
        .where(Role.name == RoleType.OWNER.value)
        .where(User.is_active.is_(True))
        .where(User.deleted_at.is_(None))
        .limit(1)
    )
    owner = (await db.execute(owner_stmt)).scalar_one_or_none()
    if owner is not None:
        return owner

    stmt = (
        select(User)
        .where(User.tenant_id == tenant_id)
        .where(User.is_active.is_(True))
        .where(User.deleted_at.is_(None))
        .order_by(User.created_at.asc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()
