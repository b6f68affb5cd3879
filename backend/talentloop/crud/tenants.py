# talentloop/crud/tenants.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core.enums import CANDIDATES_TENANT_SLUG, TenantType
from talentloop.models.tenant import Tenant


async def get_tenant_by_slug(db: AsyncSession, slug: str) -> Optional[Tenant]:
    res = await db.execute(select(Tenant).where(Tenant.slug == Tenant.normalize_slug(slug)))
    return res.scalar_one_or_none()


async def get_tenant_by_id_or_slug(db: AsyncSession, value: str) -> Optional[Tenant]:
    """
    Sign-in accepts either the tenant UUID or its slug.
    """
    value = (value or "").strip()
    if not value:
        return None
    try:
        tenant_uuid = uuid.UUID(value)
    except ValueError:
        return await get_tenant_by_slug(db, value)
    return await db.get(Tenant, tenant_uuid)


async def get_or_create_candidates_tenant(db: AsyncSession) -> Tenant:
    """
    All candidates live in one shared CANDIDATE tenant; create it on first use.
    """
    tenant = await get_tenant_by_slug(db, CANDIDATES_TENANT_SLUG)
    if tenant is not None:
        return tenant

    tenant = Tenant(name="Candidates", slug=CANDIDATES_TENANT_SLUG, type=TenantType.CANDIDATE.value)
    db.add(tenant)
    await db.flush()
    return tenant
