# talentloop/crud/subscriptions.py
from __future__ import annotations

import uuid
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core.enums import SubscriptionAction
from talentloop.core.logging import get_logger
from talentloop.core.plans import normalize_plan_name
from talentloop.models.plan import Plan
from talentloop.models.subscription import Subscription
from talentloop.models.subscription_history import SubscriptionHistory

logger = get_logger(__name__)


# ---------------------------------------------------------
# Plans
# ---------------------------------------------------------
async def list_plans(db: AsyncSession) -> Sequence[Plan]:
    res = await db.execute(select(Plan).order_by(Plan.price.asc(), Plan.name.asc()))
    return res.scalars().all()


async def get_plan_by_name(db: AsyncSession, name: str) -> Optional[Plan]:
    stmt = select(Plan).where(func.upper(Plan.name) == normalize_plan_name(name))
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def get_plan_by_stripe_price_id(db: AsyncSession, price_id: str) -> Optional[Plan]:
    res = await db.execute(select(Plan).where(Plan.stripe_price_id == price_id))
    return res.scalar_one_or_none()


# ---------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------
async def get_subscription_with_plan(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Optional[tuple[Subscription, Plan]]:
    stmt = (
        select(Subscription, Plan)
        .join(Plan, Plan.id == Subscription.plan_id)
        .where(Subscription.tenant_id == tenant_id)
    )
    if for_update:
        stmt = stmt.with_for_update(of=Subscription)
    row = (await db.execute(stmt)).first()
    if row is None:
        return None
    return row[0], row[1]


async def get_subscription_by_stripe_id(db: AsyncSession, stripe_subscription_id: str) -> Optional[Subscription]:
    stmt = select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    res = await db.execute(stmt)
    return res.scalars().first()


async def list_history(db: AsyncSession, subscription_id: uuid.UUID) -> Sequence[SubscriptionHistory]:
    stmt = (
        select(SubscriptionHistory)
        .where(SubscriptionHistory.subscription_id == subscription_id)
        .order_by(SubscriptionHistory.created_at.desc())
    )
    res = await db.execute(stmt)
    return res.scalars().all()


async def record_history(
    db: AsyncSession,
    subscription: Subscription,
    action: SubscriptionAction,
    *,
    previous_plan: Optional[Plan] = None,
    new_plan: Optional[Plan] = None,
    previous_expires_at=None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    triggered_by: str = "system",
) -> Optional[SubscriptionHistory]:
    """
    Append a history row inside the caller's transaction. History is an audit
    trail: a failure here is logged and does not abort the plan change.
    """
    try:
        async with db.begin_nested():
            entry = SubscriptionHistory(
                tenant_id=subscription.tenant_id,
                subscription_id=subscription.id,
                action=action.value,
                previous_plan_id=previous_plan.id if previous_plan else None,
                previous_plan_name=previous_plan.name if previous_plan else None,
                previous_plan_price=previous_plan.price if previous_plan else None,
                previous_expires_at=previous_expires_at,
                new_plan_id=new_plan.id if new_plan else None,
                new_plan_name=new_plan.name if new_plan else None,
                new_plan_price=new_plan.price if new_plan else None,
                new_expires_at=subscription.expires_at,
                reason=reason,
                notes=notes,
                triggered_by=triggered_by,
            )
            db.add(entry)
            await db.flush()
    except Exception:
        logger.exception(
            "subscription_history_record_failed",
            tenant_id=str(subscription.tenant_id),
            action=action.value,
        )
        return None

    logger.info("subscription_history_recorded", tenant_id=str(subscription.tenant_id), action=action.value, reason=reason)
    return entry
