# backend/talentloop/db/seed.py
"""
Seed the plan catalogue and the RBAC roles.

    python -m talentloop.db.seed

Safe to run repeatedly: existing plans are updated in place, existing roles
keep whatever permissions were configured for them.
"""
from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core.config import settings
from talentloop.core.logging import configure_logging, get_logger
from talentloop.core.plans import PLAN_CATALOG
from talentloop.core.roles import RoleType
from talentloop.crud.roles import ensure_permissions, get_or_create_role
from talentloop.crud.subscriptions import get_plan_by_name
from talentloop.db.session import session_scope
from talentloop.models.plan import Plan

logger = get_logger(__name__)


async def seed_plans(db: AsyncSession) -> list[Plan]:
    plans = []
    for spec in PLAN_CATALOG.values():
        plan = await get_plan_by_name(db, spec.name)
        created = plan is None
        if created:
            plan = Plan(name=spec.name)
            db.add(plan)

        plan.price = spec.price
        plan.description = spec.description
        plan.max_users = spec.max_users
        plan.max_contacts = spec.max_contacts
        plan.has_api = spec.has_api
        plan.billing_period_days = spec.billing_period_days
        plan.trial_duration_hours = spec.trial_duration_hours

        price_id = settings.STRIPE_PRICE_IDS.get(spec.name)
        if price_id:
            plan.stripe_price_id = price_id

        logger.info("plan_seeded", plan=spec.name, created=created, stripe_price_id=plan.stripe_price_id)
        plans.append(plan)

    await db.flush()
    return plans


async def seed_roles(db: AsyncSession) -> None:
    await ensure_permissions(db)
    for role in RoleType:
        await get_or_create_role(db, role)
    logger.info("roles_seeded", roles=[r.value for r in RoleType])


async def seed() -> None:
    async with session_scope() as db:
        await seed_plans(db)
        await seed_roles(db)
        await db.commit()


if __name__ == "__main__":
    configure_logging()
    asyncio.run(seed())
