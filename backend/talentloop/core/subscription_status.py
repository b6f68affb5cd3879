from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from talentloop.core.enums import SubStatus

DEFAULT_RENEWAL_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    exp = _aware(expires_at)
    if exp is None:
        return False
    return exp < (now or _utcnow())


def is_subscription_valid(subscription, now: Optional[datetime] = None) -> bool:
    """
    Usable subscription: ACTIVE and not past its expiry (no expiry = lifetime).
    """
    if subscription is None:
        return False
    return subscription.status == SubStatus.ACTIVE.value and not is_expired(subscription.expires_at, now)


def resolve_history_status(subscription, now: Optional[datetime] = None) -> str:
    """
    ACTIVE | CANCELED | EXPIRED, as reported by the history endpoint.
    A missing expiry counts as "expires now" there, matching the plan info view.
    """
    now = now or _utcnow()
    if subscription.status == SubStatus.CANCELED.value:
        return "CANCELED"
    expires_at = _aware(subscription.expires_at) or now
    if expires_at < now:
        return "EXPIRED"
    return "ACTIVE"


def resolve_plan_info_status(subscription, now: Optional[datetime] = None) -> str:
    """
    ACTIVE | EXPIRED | CANCELLED, as reported on plan info payloads.
    """
    status = resolve_history_status(subscription, now)
    return "CANCELLED" if status == "CANCELED" else status


def extend_expiry_for_upgrade(current_expires_at: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """
    Keep the remaining paid time and add a fresh billing period.
    """
    now = now or _utcnow()
    current = _aware(current_expires_at) or now
    remaining = current - now
    return now + remaining + timedelta(days=DEFAULT_RENEWAL_DAYS)


def expiry_for_billing_period(billing_period_days: int | None, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    None when the plan never expires (billing period 0).
    """
    if not billing_period_days or billing_period_days <= 0:
        return None
    return (now or _utcnow()) + timedelta(days=billing_period_days)


_STRIPE_STATUS_MAP: dict[str, SubStatus] = {
    "active": SubStatus.ACTIVE,
    "past_due": SubStatus.PAST_DUE,
    "canceled": SubStatus.CANCELED,
    "unpaid": SubStatus.CANCELED,
    "incomplete_expired": SubStatus.EXPIRED,
}


def map_stripe_status(stripe_status: str | None) -> SubStatus:
    return _STRIPE_STATUS_MAP.get((stripe_status or "").strip().lower(), SubStatus.CANCELED)
