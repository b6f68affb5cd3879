# backend/talentloop/core/notifications.py
"""
One helper per transactional email. Helpers build the subject and template
context, and never raise: a failed email must not fail the calling operation.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from talentloop.core import mailer
from talentloop.core.config import settings
from talentloop.core.logging import get_logger

logger = get_logger(__name__)

PASSWORD_RESET_EXPIRY_MINUTES = 60

LIMIT_LABELS = {"users": "team members", "contacts": "contacts"}


async def _deliver(kind: str, to_email: str, subject: str, template: str, **context) -> bool:
    try:
        html = mailer.render_template(template, **context)
        return await mailer.send_email(to_email, subject, html)
    except Exception:
        logger.exception("notification_failed", kind=kind, to=to_email)
        return False


async def send_welcome_email(
    *,
    to_email: str,
    user_name: str,
    password: str,
    plan_name: str,
    company_name: Optional[str] = None,
    tenant_slug: Optional[str] = None,
) -> bool:
    subject = (
        f"Welcome to {settings.EMAIL_FROM_NAME}, {company_name}!"
        if company_name
        else f"Welcome to {settings.EMAIL_FROM_NAME}!"
    )
    return await _deliver(
        "welcome",
        to_email,
        subject,
        "welcome",
        user_name=user_name,
        email=to_email,
        password=password,
        plan_name=plan_name,
        company_name=company_name,
        tenant_slug=tenant_slug,
        login_url=f"{settings.FRONTEND_URL}/auth/sign-in",
    )


async def send_password_reset_email(*, to_email: str, user_name: str, token: str) -> bool:
    return await _deliver(
        "password_reset",
        to_email,
        "Reset your password",
        "password_reset",
        user_name=user_name,
        reset_url=f"{settings.FRONTEND_URL}/auth/reset-password?token={token}",
        expires_in_minutes=PASSWORD_RESET_EXPIRY_MINUTES,
    )


async def send_upgrade_email(
    *,
    to_email: str,
    user_name: str,
    old_plan: str,
    new_plan: str,
    new_price: float = 0,
    currency: str = "BRL",
    next_billing_date: Optional[datetime] = None,
) -> bool:
    return await _deliver(
        "upgrade",
        to_email,
        f"Your plan is now {new_plan}",
        "upgrade",
        user_name=user_name,
        old_plan=old_plan,
        new_plan=new_plan,
        new_price=new_price,
        currency=currency,
        next_billing_date=next_billing_date,
        dashboard_url=f"{settings.FRONTEND_URL}/dashboard",
    )


async def send_cancellation_email(
    *,
    to_email: str,
    user_name: str,
    plan_name: str,
    access_until: Optional[datetime] = None,
) -> bool:
    return await _deliver(
        "cancellation",
        to_email,
        "Your subscription was canceled",
        "cancellation",
        user_name=user_name,
        plan_name=plan_name,
        access_until=access_until,
        reactivate_url=f"{settings.FRONTEND_URL}/dashboard/plans",
    )


async def send_limit_alert_email(
    *,
    to_email: str,
    user_name: str,
    limit_type: str,
    current_usage: int,
    limit: int,
    usage_percentage: int,
) -> bool:
    return await _deliver(
        "limit_alert",
        to_email,
        f"You are using {usage_percentage}% of your plan",
        "limit_alert",
        user_name=user_name,
        limit_label=LIMIT_LABELS.get(limit_type, limit_type),
        current_usage=current_usage,
        limit=limit,
        usage_percentage=usage_percentage,
        upgrade_url=f"{settings.FRONTEND_URL}/dashboard/plans",
    )


async def send_two_factor_enabled_email(*, to_email: str, user_name: str, backup_codes_count: int) -> bool:
    return await _deliver(
        "two_factor_enabled",
        to_email,
        "Two-factor authentication enabled",
        "two_factor_enabled",
        user_name=user_name,
        backup_codes_count=backup_codes_count,
    )


async def send_two_factor_disabled_email(*, to_email: str, user_name: str) -> bool:
    return await _deliver(
        "two_factor_disabled",
        to_email,
        "Two-factor authentication disabled",
        "two_factor_disabled",
        user_name=user_name,
    )
