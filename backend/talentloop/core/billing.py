# backend/talentloop/core/billing.py
"""
Subscription lifecycle shared by signup, the plans API and Stripe webhooks.

Functions here commit their own transaction when they say so; emails are sent
after the commit so a delivery failure never rolls back billing state.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core import notifications
from talentloop.core import stripe_gateway
from talentloop.core.enums import CANDIDATES_TENANT_SLUG, SubStatus, SubscriptionAction, TenantType
from talentloop.core.logging import get_logger
from talentloop.core.plans import get_plan_level, is_upgrade
from talentloop.core.roles import RoleType
from talentloop.core.security import generate_temporary_password, hash_password
from talentloop.core.subscription_status import expiry_for_billing_period, map_stripe_status
from talentloop.crud import roles as roles_crud
from talentloop.crud import subscriptions as subs_crud
from talentloop.crud.tenants import get_or_create_candidates_tenant, get_tenant_by_slug
from talentloop.crud.users import get_tenant_contact, get_user_by_email
from talentloop.models.plan import Plan
from talentloop.models.stripe_checkout_session import StripeCheckoutSession
from talentloop.models.subscription import Subscription
from talentloop.models.tenant import Tenant
from talentloop.models.user import User

logger = get_logger(__name__)

CHECKOUT_SESSION_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_timestamp(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _stripe_id(value: Any) -> Optional[str]:
    # expanded objects come back as dicts
    if isinstance(value, dict):
        return value.get("id")
    return value or None


# ---------------------------------------------------------
# Accounts
# ---------------------------------------------------------
async def create_account_user(
    db: AsyncSession,
    *,
    tenant: Tenant,
    name: str,
    email: str,
    role: Optional[RoleType] = None,
    is_active: bool = True,
) -> tuple[User, str]:
    """
    Create a user with a temporary password. Returns (user, plain password)
    so the caller can email it. Does not commit.
    """
    password = generate_temporary_password()
    user = User(
        tenant_id=tenant.id,
        name=User.normalize_name(name),
        email=User.normalize_email(email),
        password_hash=hash_password(password),
        is_active=is_active,
        two_factor_enabled=False,
        two_factor_backup_codes=[],
    )
    db.add(user)
    await db.flush()

    if role is not None:
        await roles_crud.assign_role(db, user_id=user.id, tenant_id=tenant.id, role=role)

    logger.info("user_created", user_id=str(user.id), tenant_id=str(tenant.id), role=role.value if role else None)
    return user, password


async def create_company_tenant(db: AsyncSession, *, name: str, slug: str) -> Tenant:
    tenant = Tenant(name=name, slug=Tenant.normalize_slug(slug), type=TenantType.COMPANY.value)
    db.add(tenant)
    await db.flush()
    logger.info("tenant_created", tenant_id=str(tenant.id), slug=tenant.slug)
    return tenant


# ---------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------
async def ensure_subscription(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    plan: Plan,
    status: SubStatus = SubStatus.ACTIVE,
    expires_at: Optional[datetime] = None,
    triggered_by: str = "system",
    reason: Optional[str] = None,
) -> Subscription:
    """
    Create the tenant subscription if it does not exist yet. Does not commit.
    """
    existing = await subs_crud.get_subscription_with_plan(db, tenant_id)
    if existing is not None:
        return existing[0]

    sub = Subscription(
        tenant_id=tenant_id,
        plan_id=plan.id,
        status=status.value,
        started_at=_utcnow(),
        expires_at=expires_at,
    )
    db.add(sub)
    await db.flush()
    await subs_crud.record_history(
        db,
        sub,
        SubscriptionAction.CREATED,
        new_plan=plan,
        reason=reason or "Subscription created",
        triggered_by=triggered_by,
    )
    return sub


async def upsert_subscription(
    db: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    plan: Plan,
    status: SubStatus,
    expires_at: Optional[datetime],
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    started_at: Optional[datetime] = None,
    triggered_by: str = "system",
    reason: Optional[str] = None,
) -> tuple[Subscription, Optional[Plan]]:
    """
    Bind the tenant to plan. Returns (subscription, previous plan or None when created).
    Does not commit.
    """
    existing = await subs_crud.get_subscription_with_plan(db, tenant_id, for_update=True)
    now = _utcnow()

    if existing is None:
        sub = Subscription(
            tenant_id=tenant_id,
            plan_id=plan.id,
            status=status.value,
            started_at=started_at or now,
            expires_at=expires_at,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        db.add(sub)
        await db.flush()
        await subs_crud.record_history(
            db, sub, SubscriptionAction.CREATED, new_plan=plan, reason=reason, triggered_by=triggered_by
        )
        return sub, None

    sub, previous_plan = existing
    previous_expires_at = sub.expires_at

    sub.plan_id = plan.id
    sub.status = status.value
    sub.expires_at = expires_at
    sub.renewed_at = now
    if started_at is not None:
        sub.started_at = started_at
    if status == SubStatus.ACTIVE:
        sub.canceled_at = None
    if stripe_customer_id:
        sub.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        sub.stripe_subscription_id = stripe_subscription_id
    await db.flush()

    old_level, new_level = get_plan_level(previous_plan.name), get_plan_level(plan.name)
    if new_level > old_level:
        action = SubscriptionAction.UPGRADED
    elif new_level < old_level:
        action = SubscriptionAction.DOWNGRADED
    else:
        action = SubscriptionAction.RENEWED

    await subs_crud.record_history(
        db,
        sub,
        action,
        previous_plan=previous_plan,
        new_plan=plan,
        previous_expires_at=previous_expires_at,
        reason=reason,
        triggered_by=triggered_by,
    )
    return sub, previous_plan


async def notify_upgrade(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    old_plan: str,
    new_plan: Plan,
    next_billing_date: Optional[datetime],
) -> None:
    contact = await get_tenant_contact(db, tenant_id)
    if contact is None:
        logger.warning("upgrade_email_no_contact", tenant_id=str(tenant_id))
        return
    await notifications.send_upgrade_email(
        to_email=contact.email,
        user_name=contact.name,
        old_plan=old_plan,
        new_plan=new_plan.name,
        new_price=float(new_plan.price or 0),
        currency=new_plan.currency,
        next_billing_date=next_billing_date,
    )


# ---------------------------------------------------------
# Signup checkout completion
# ---------------------------------------------------------
async def handle_checkout_completed(
    db: AsyncSession,
    session_id: str,
    *,
    stripe_subscription_id: Optional[str] = None,
) -> Optional[StripeCheckoutSession]:
    """
    Turn a paid signup checkout into an account. Idempotent: unknown or already
    completed sessions are ignored. A company checkout whose domain became a
    workspace in the meantime is refused and stays uncompleted. Commits.
    """
    res = await db.execute(
        select(StripeCheckoutSession).where(StripeCheckoutSession.session_id == session_id).with_for_update()
    )
    checkout = res.scalar_one_or_none()
    if checkout is None:
        logger.warning("checkout_session_unknown", session_id=session_id)
        return None
    if checkout.completed:
        logger.info("checkout_session_already_completed", session_id=session_id)
        return checkout

    plan = await db.get(Plan, checkout.plan_id)
    if plan is None:
        logger.error("checkout_plan_missing", session_id=session_id, plan_id=str(checkout.plan_id))
        return None

    is_candidate = not checkout.domain or checkout.domain == CANDIDATES_TENANT_SLUG
    company_name: Optional[str] = None

    if is_candidate:
        tenant = await get_or_create_candidates_tenant(db)
        role = None
    else:
        # a paid checkout never joins a workspace that already exists
        if await get_tenant_by_slug(db, checkout.domain) is not None:
            logger.error("checkout_domain_taken", session_id=session_id, domain=checkout.domain)
            return None
        tenant = await create_company_tenant(db, name=checkout.company_name, slug=checkout.domain)
        role = RoleType.OWNER
        company_name = tenant.name

    user = await get_user_by_email(db, tenant.id, checkout.contact_email)
    password: Optional[str] = None
    if user is None:
        user, password = await create_account_user(
            db, tenant=tenant, name=checkout.contact_name, email=checkout.contact_email, role=role
        )

    await upsert_subscription(
        db,
        tenant_id=tenant.id,
        plan=plan,
        status=SubStatus.ACTIVE,
        expires_at=expiry_for_billing_period(plan.billing_period_days),
        stripe_customer_id=checkout.stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        triggered_by="stripe",
        reason="Checkout completed",
    )

    checkout.completed = True
    checkout.completed_at = _utcnow()
    await db.commit()

    logger.info(
        "checkout_completed",
        session_id=session_id,
        tenant_id=str(tenant.id),
        user_id=str(user.id),
        plan=plan.name,
    )

    if password is not None:
        await notifications.send_welcome_email(
            to_email=user.email,
            user_name=user.name,
            password=password,
            plan_name=plan.name,
            company_name=company_name,
            tenant_slug=None if is_candidate else tenant.slug,
        )
    return checkout


# ---------------------------------------------------------
# Stripe subscription sync
# ---------------------------------------------------------
async def _resolve_tenant_id(db: AsyncSession, stripe_sub: dict[str, Any]) -> Optional[uuid.UUID]:
    raw = (stripe_sub.get("metadata") or {}).get("tenantId")
    if raw:
        try:
            return uuid.UUID(str(raw))
        except ValueError:
            logger.warning("stripe_metadata_bad_tenant_id", subscription_id=stripe_sub.get("id"))
            return None

    # signup checkouts have no tenant yet when Stripe creates the subscription
    local = await subs_crud.get_subscription_by_stripe_id(db, stripe_sub.get("id") or "")
    return local.tenant_id if local else None


async def process_auto_upgrade(db: AsyncSession, stripe_sub: dict[str, Any]) -> Optional[dict[str, Any]]:
    """
    Mirror a Stripe subscription (price, status, period) onto the tenant
    subscription. Commits.
    """
    tenant_id = await _resolve_tenant_id(db, stripe_sub)
    if tenant_id is None:
        logger.warning("auto_upgrade_no_tenant", subscription_id=stripe_sub.get("id"))
        return None

    price_id = stripe_gateway.first_item_price_id(stripe_sub)
    if not price_id:
        logger.warning("auto_upgrade_no_price", subscription_id=stripe_sub.get("id"))
        return None

    new_plan = await subs_crud.get_plan_by_stripe_price_id(db, price_id)
    if new_plan is None:
        logger.warning("auto_upgrade_unknown_price", price_id=price_id)
        return None

    current = await subs_crud.get_subscription_with_plan(db, tenant_id)
    if current is None:
        logger.error("auto_upgrade_no_subscription", tenant_id=str(tenant_id))
        return None
    old_plan_name = current[1].name

    expires_at = _from_timestamp(stripe_gateway.period_end_of(stripe_sub))
    await upsert_subscription(
        db,
        tenant_id=tenant_id,
        plan=new_plan,
        status=map_stripe_status(stripe_sub.get("status")),
        expires_at=expires_at,
        started_at=_from_timestamp(stripe_gateway.period_start_of(stripe_sub)),
        stripe_customer_id=_stripe_id(stripe_sub.get("customer")),
        stripe_subscription_id=stripe_sub.get("id"),
        triggered_by="stripe",
        reason="Stripe subscription update",
    )
    await db.commit()

    upgraded = is_upgrade(old_plan_name, new_plan.name)
    logger.info(
        "auto_upgrade_applied",
        tenant_id=str(tenant_id),
        old_plan=old_plan_name,
        new_plan=new_plan.name,
        upgraded=upgraded,
    )

    if upgraded:
        await notify_upgrade(db, tenant_id, old_plan=old_plan_name, new_plan=new_plan, next_billing_date=expires_at)

    return {
        "success": True,
        "tenantId": str(tenant_id),
        "oldPlanName": old_plan_name,
        "newPlanName": new_plan.name,
        "upgraded": upgraded,
    }


async def _local_subscription_for(db: AsyncSession, stripe_sub_id: Optional[str]) -> Optional[Subscription]:
    if not stripe_sub_id:
        return None
    return await subs_crud.get_subscription_by_stripe_id(db, stripe_sub_id)


async def handle_subscription_deleted(db: AsyncSession, stripe_sub: dict[str, Any]) -> None:
    sub = await _local_subscription_for(db, stripe_sub.get("id"))
    if sub is None:
        logger.warning("subscription_deleted_unknown", subscription_id=stripe_sub.get("id"))
        return

    plan = await db.get(Plan, sub.plan_id)
    sub.status = SubStatus.CANCELED.value
    sub.canceled_at = _utcnow()
    await subs_crud.record_history(
        db,
        sub,
        SubscriptionAction.CANCELED,
        previous_plan=plan,
        previous_expires_at=sub.expires_at,
        reason="Subscription canceled in Stripe",
        triggered_by="stripe",
    )
    await db.commit()
    logger.info("subscription_canceled_by_stripe", tenant_id=str(sub.tenant_id))


def _invoice_subscription_id(invoice: dict[str, Any]) -> Optional[str]:
    sub_id = _stripe_id(invoice.get("subscription"))
    if sub_id:
        return sub_id
    # newer API versions nest it under parent.subscription_details
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _stripe_id(details.get("subscription"))


async def handle_invoice_paid(db: AsyncSession, invoice: dict[str, Any]) -> None:
    sub_id = _invoice_subscription_id(invoice)
    if not sub_id:
        logger.info("invoice_paid_without_subscription", invoice_id=invoice.get("id"))
        return
    stripe_sub = await stripe_gateway.retrieve_subscription(sub_id)
    await process_auto_upgrade(db, stripe_sub)


async def handle_invoice_failed(db: AsyncSession, invoice: dict[str, Any]) -> None:
    sub = await _local_subscription_for(db, _invoice_subscription_id(invoice))
    if sub is None:
        logger.warning("invoice_failed_unknown_subscription", invoice_id=invoice.get("id"))
        return
    sub.status = SubStatus.PAST_DUE.value
    await db.commit()
    logger.info("subscription_past_due", tenant_id=str(sub.tenant_id), invoice_id=invoice.get("id"))


async def dispatch_webhook_event(db: AsyncSession, event: dict[str, Any]) -> None:
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))

    if event_type == "checkout.session.completed":
        await handle_checkout_completed(db, obj.get("id") or "", stripe_subscription_id=_stripe_id(obj.get("subscription")))
    elif event_type == "customer.subscription.updated":
        await process_auto_upgrade(db, obj)
    elif event_type == "customer.subscription.deleted":
        await handle_subscription_deleted(db, obj)
    elif event_type == "invoice.payment_succeeded":
        await handle_invoice_paid(db, obj)
    elif event_type == "invoice.payment_failed":
        await handle_invoice_failed(db, obj)
    else:
        logger.info("stripe_webhook_ignored", event_type=event_type)
