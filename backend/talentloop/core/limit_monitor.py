# backend/talentloop/core/limit_monitor.py
"""
Periodic plan-usage check. Tenants close to their seat limit get one alert
email per limit type every 24 hours.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from talentloop.core import notifications
from talentloop.core.config import settings
from talentloop.core.enums import EmailLogType, SubStatus, TenantType
from talentloop.core.logging import get_logger
from talentloop.crud.users import count_active_users, get_tenant_contact
from talentloop.db.session import session_scope
from talentloop.models.email_log import EmailLog
from talentloop.models.plan import Plan
from talentloop.models.subscription import Subscription
from talentloop.models.tenant import Tenant

logger = get_logger(__name__)

ALERT_THRESHOLDS: tuple[int, ...] = (70, 80, 90)
ALERT_COOLDOWN = timedelta(hours=24)
LIMIT_USERS = "users"


def usage_percentage(current: int, limit: Optional[int]) -> Optional[float]:
    """
    None when the limit is unlimited (NULL or 0).
    """
    if not limit or limit <= 0:
        return None
    return current / limit * 100


def alert_threshold(percentage: Optional[float]) -> Optional[int]:
    """
    The threshold band percentage falls into: [70, 80) -> 70, [80, 90) -> 80, >= 90 -> 90.
    """
    if percentage is None:
        return None
    top = ALERT_THRESHOLDS[-1]
    if percentage >= top:
        return top
    for threshold in ALERT_THRESHOLDS:
        if threshold <= percentage < threshold + 10:
            return threshold
    return None


async def _alerted_recently(db: AsyncSession, tenant_id: uuid.UUID, limit_type: str, now: datetime) -> bool:
    stmt = (
        select(func.count(EmailLog.id))
        .where(EmailLog.tenant_id == tenant_id)
        .where(EmailLog.type == EmailLogType.LIMIT_ALERT.value)
        .where(EmailLog.limit_type == limit_type)
        .where(EmailLog.sent_at > now - ALERT_COOLDOWN)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0) > 0


async def check_tenant_limits(db: AsyncSession, tenant_id: uuid.UUID, max_users: int, now: datetime) -> bool:
    """
    Returns True when an alert was sent.
    """
    current = await count_active_users(db, tenant_id)
    pct = usage_percentage(current, max_users)
    threshold = alert_threshold(pct)
    if threshold is None:
        return False

    if await _alerted_recently(db, tenant_id, LIMIT_USERS, now):
        logger.info("limit_alert_skipped_recent", tenant_id=str(tenant_id), limit_type=LIMIT_USERS)
        return False

    contact = await get_tenant_contact(db, tenant_id)
    if contact is None:
        logger.warning("limit_alert_no_contact", tenant_id=str(tenant_id))
        return False

    await notifications.send_limit_alert_email(
        to_email=contact.email,
        user_name=contact.name,
        limit_type=LIMIT_USERS,
        current_usage=current,
        limit=max_users,
        usage_percentage=round(pct),
    )
    db.add(EmailLog(tenant_id=tenant_id, type=EmailLogType.LIMIT_ALERT.value, limit_type=LIMIT_USERS, sent_at=now))
    await db.commit()

    logger.info(
        "limit_alert_sent",
        tenant_id=str(tenant_id),
        limit_type=LIMIT_USERS,
        usage=current,
        limit=max_users,
        threshold=threshold,
    )
    return True


async def check_limits(db: AsyncSession) -> int:
    """
    One pass over every ACTIVE company subscription with a seat limit. Returns alerts sent.
    A failing tenant is logged and does not stop the pass.
    """
    now = datetime.now(timezone.utc)
    sent = 0
    stmt = (
        select(Subscription.tenant_id, Plan.max_users)
        .join(Plan, Plan.id == Subscription.plan_id)
        .join(Tenant, Tenant.id == Subscription.tenant_id)
        .where(Tenant.type == TenantType.COMPANY.value)
        .where(Subscription.status == SubStatus.ACTIVE.value)
        .where(Plan.max_users > 0)
    )
    rows = (await db.execute(stmt)).all()

    for tenant_id, max_users in rows:
        try:
            if await check_tenant_limits(db, tenant_id, max_users, now):
                sent += 1
        except Exception:
            logger.exception("limit_check_failed", tenant_id=str(tenant_id))
            await db.rollback()

    logger.info("limit_check_completed", subscriptions=len(rows), alerts=sent)
    return sent


async def run_periodically(
    interval_hours: Optional[float] = None,
    factory: Optional[async_sessionmaker] = None,
) -> None:
    interval = (interval_hours or settings.LIMIT_MONITOR_INTERVAL_HOURS) * 3600
    logger.info("limit_monitor_started", interval_seconds=interval)
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_scope(factory) as db:
                await check_limits(db)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("limit_monitor_pass_failed")


def start_limit_monitor() -> Optional[asyncio.Task]:
    if not settings.LIMIT_MONITOR_ENABLED:
        logger.info("limit_monitor_disabled")
        return None
    return asyncio.create_task(run_periodically(), name="limit-monitor")


async def stop_limit_monitor(task: Optional[asyncio.Task]) -> None:
    if task is None:
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    logger.info("limit_monitor_stopped")
