# backend/talentloop/api/v1/plans.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.deps.permissions import check_permissions
from talentloop.api.deps.tenant import get_current_role, get_current_tenant
from talentloop.api.v1.auth import get_current_user
from talentloop.auth.permissions import PERM
from talentloop.core import notifications, stripe_gateway
from talentloop.core.billing import notify_upgrade, upsert_subscription
from talentloop.core.enums import SubStatus, SubscriptionAction, TenantType
from talentloop.core.logging import get_logger
from talentloop.core.plans import get_plan_features, get_plan_level, plan_belongs_to, plan_names_for_tenant_type
from talentloop.core.subscription_status import (
    DEFAULT_RENEWAL_DAYS,
    expiry_for_billing_period,
    extend_expiry_for_upgrade,
    is_subscription_valid,
    resolve_history_status,
    resolve_plan_info_status,
)
from talentloop.crud import subscriptions as subs_crud
from talentloop.crud.users import count_active_users, get_tenant_contact
from talentloop.db.session import get_db
from talentloop.models.plan import Plan
from talentloop.models.role import Role
from talentloop.models.subscription import Subscription
from talentloop.models.subscription_history import SubscriptionHistory
from talentloop.models.tenant import Tenant
from talentloop.schemas.plans import (
    AvailablePlan,
    BillingPortalRequest,
    BillingPortalResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CompanyInfo,
    DetailedHistoryEvent,
    DetailedHistoryResponse,
    HistoryEvent,
    HistoryResponse,
    HistorySummary,
    LimitsInfo,
    PlanInfo,
    PlanInfoResponse,
    SubscriptionActionResponse,
    SubscriptionValidResponse,
    UpgradeRequest,
    UpgradeResponse,
    UsageInfo,
    VerifyCheckoutRequest,
    VerifyCheckoutResponse,
)

router = APIRouter(prefix="/plans", tags=["plans"], dependencies=[Depends(get_current_user)])

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def require_billing_manage(
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    role: Optional[Role] = Depends(get_current_role),
) -> Tenant:
    """
    Candidates own their billing. In companies, billing:manage is required.
    """
    if tenant.type == TenantType.COMPANY.value:
        await check_permissions(db, role, [PERM.BILLING_MANAGE])
    return tenant


def _plan_info(plan: Plan, sub: Optional[Subscription] = None) -> PlanInfo:
    return PlanInfo(
        id=plan.id,
        name=plan.name,
        price=float(plan.price or 0),
        currency=plan.currency,
        description=plan.description,
        max_users=plan.max_users,
        max_contacts=plan.max_contacts,
        has_api=bool(plan.has_api),
        billing_period_days=plan.billing_period_days,
        stripe_price_id=plan.stripe_price_id,
        level=get_plan_level(plan.name),
        is_free=plan.is_free,
        status=resolve_plan_info_status(sub) if sub is not None else None,
        expires_at=sub.expires_at if sub is not None else None,
    )


def _history_event(entry: SubscriptionHistory) -> HistoryEvent:
    return HistoryEvent(
        id=entry.id,
        action=entry.action,
        previous_plan=entry.previous_plan_name,
        previous_plan_price=entry.previous_plan_price,
        previous_expires_at=entry.previous_expires_at,
        new_plan=entry.new_plan_name,
        new_plan_price=entry.new_plan_price,
        new_expires_at=entry.new_expires_at,
        reason=entry.reason,
        notes=entry.notes,
        triggered_by=entry.triggered_by,
        created_at=entry.created_at,
    )


def describe_history_action(entry: SubscriptionHistory) -> str:
    action = entry.action
    if action == SubscriptionAction.CREATED.value:
        return f"Subscription created on the {entry.new_plan_name} plan"
    if action == SubscriptionAction.UPGRADED.value:
        return f"Upgraded from {entry.previous_plan_name} to {entry.new_plan_name}"
    if action == SubscriptionAction.DOWNGRADED.value:
        return f"Downgraded from {entry.previous_plan_name} to {entry.new_plan_name}"
    if action == SubscriptionAction.RENEWED.value:
        return f"{entry.new_plan_name} plan renewed"
    if action == SubscriptionAction.CANCELED.value:
        return f"{entry.previous_plan_name} plan canceled"
    if action == SubscriptionAction.REACTIVATED.value:
        return f"Subscription reactivated on the {entry.new_plan_name} plan"
    if action == SubscriptionAction.EXPIRED.value:
        return f"{entry.previous_plan_name} plan expired"
    return "Unknown action"


async def _subscription_or_404(
    db: AsyncSession,
    tenant: Tenant,
    *,
    for_update: bool = False,
) -> tuple[Subscription, Plan]:
    found = await subs_crud.get_subscription_with_plan(db, tenant.id, for_update=for_update)
    if found is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return found


async def _email_contact(db: AsyncSession, tenant: Tenant):
    contact = await get_tenant_contact(db, tenant.id)
    if contact is None:
        logger.warning("plan_email_no_contact", tenant_id=str(tenant.id))
    return contact


# ---------------------------------------------------------
# Read
# ---------------------------------------------------------
@router.get("/available", response_model=list[AvailablePlan])
async def available_plans(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> list[AvailablePlan]:
    names = set(plan_names_for_tenant_type(tenant.type))
    plans = [p for p in await subs_crud.list_plans(db) if p.name.upper() in names]
    plans.sort(key=lambda p: get_plan_level(p.name))
    return [
        AvailablePlan(**_plan_info(p).model_dump(), features=get_plan_features(p.name))
        for p in plans
    ]


@router.get("/info", response_model=PlanInfoResponse)
async def plan_info(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> PlanInfoResponse:
    sub, plan = await _subscription_or_404(db, tenant)
    return PlanInfoResponse(
        plan=_plan_info(plan, sub),
        company=CompanyInfo(id=tenant.id, name=tenant.name, slug=tenant.slug, type=tenant.type),
        usage=UsageInfo(current_users=await count_active_users(db, tenant.id), max_users=plan.max_users),
        limits=LimitsInfo(contacts=plan.max_contacts, api=bool(plan.has_api)),
    )


@router.get("/history", response_model=HistoryResponse)
async def plan_history(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> HistoryResponse:
    sub, plan = await _subscription_or_404(db, tenant)
    entries = await subs_crud.list_history(db, sub.id)

    now = _utcnow()
    expires_at = sub.expires_at or now
    days_until_expiry = (expires_at - now).days if expires_at > now else None
    started_at = sub.started_at

    return HistoryResponse(
        current_status=resolve_history_status(sub, now),
        current_plan=plan.name,
        current_plan_price=float(plan.price or 0),
        current_expires_at=expires_at,
        started_at=started_at,
        events=[_history_event(e) for e in entries],
        summary=HistorySummary(
            total_upgrades=sum(1 for e in entries if e.action == SubscriptionAction.UPGRADED.value),
            total_downgrades=sum(1 for e in entries if e.action == SubscriptionAction.DOWNGRADED.value),
            total_cancellations=sum(1 for e in entries if e.action == SubscriptionAction.CANCELED.value),
            days_since_creation=max((now - started_at).days, 0),
            days_until_expiry=days_until_expiry,
        ),
    )


@router.get("/history/detailed", response_model=DetailedHistoryResponse)
async def plan_history_detailed(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> DetailedHistoryResponse:
    sub, plan = await _subscription_or_404(db, tenant)
    entries = await subs_crud.list_history(db, sub.id)
    return DetailedHistoryResponse(
        current_plan=plan.name,
        events=[
            DetailedHistoryEvent(**_history_event(e).model_dump(), description=describe_history_action(e))
            for e in entries
        ],
    )


@router.get("/subscription/validate", response_model=SubscriptionValidResponse)
async def validate_subscription(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
) -> SubscriptionValidResponse:
    found = await subs_crud.get_subscription_with_plan(db, tenant.id)
    return SubscriptionValidResponse(is_valid=is_subscription_valid(found[0] if found else None))


# ---------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------
@router.post("/upgrade", response_model=UpgradeResponse)
async def upgrade_plan(
    payload: UpgradeRequest,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> UpgradeResponse:
    """
    newPlan: local upgrade keeping the remaining paid time.
    stripePriceId: swap the Stripe subscription price (prorated) and restart the period.
    """
    if not payload.new_plan and not payload.stripe_price_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Specify newPlan or stripePriceId")

    sub, current_plan = await _subscription_or_404(db, tenant, for_update=True)

    if payload.stripe_price_id:
        new_plan = await subs_crud.get_plan_by_stripe_price_id(db, payload.stripe_price_id)
    else:
        new_plan = await subs_crud.get_plan_by_name(db, payload.new_plan)
    if new_plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")

    if not plan_belongs_to(new_plan.name, tenant.type):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Plan {new_plan.name} is not available for this account type",
        )

    if get_plan_level(new_plan.name) <= get_plan_level(current_plan.name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"The new plan must be above the current plan ({current_plan.name})",
        )

    if payload.stripe_price_id:
        if not sub.stripe_subscription_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No Stripe subscription to update")
        try:
            await stripe_gateway.change_subscription_price(sub.stripe_subscription_id, payload.stripe_price_id)
        except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
            logger.warning("stripe_upgrade_failed", tenant_id=str(tenant.id), error=str(exc))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "stripe_upgrade_failed", "message": "Could not update the subscription in Stripe."},
            )
        new_expires_at = _utcnow() + timedelta(days=DEFAULT_RENEWAL_DAYS)
        reason = "Upgrade via Stripe"
    else:
        new_expires_at = extend_expiry_for_upgrade(sub.expires_at)
        reason = "Upgrade requested by user"

    sub, previous_plan = await upsert_subscription(
        db,
        tenant_id=tenant.id,
        plan=new_plan,
        status=SubStatus.ACTIVE,
        expires_at=new_expires_at,
        triggered_by="user",
        reason=reason,
    )
    await db.commit()

    logger.info("plan_upgraded", tenant_id=str(tenant.id), old_plan=current_plan.name, new_plan=new_plan.name)
    await notify_upgrade(db, tenant.id, old_plan=current_plan.name, new_plan=new_plan, next_billing_date=new_expires_at)

    return UpgradeResponse(
        success=True,
        message=f"Upgraded from {current_plan.name} to {new_plan.name}",
        new_plan=_plan_info(new_plan, sub),
        next_billing_date=new_expires_at,
    )


@router.post("/cancel", response_model=SubscriptionActionResponse)
async def cancel_plan(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> SubscriptionActionResponse:
    sub, plan = await _subscription_or_404(db, tenant, for_update=True)
    if sub.status == SubStatus.CANCELED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Subscription is already canceled")

    if sub.stripe_subscription_id:
        try:
            await stripe_gateway.cancel_subscription(sub.stripe_subscription_id)
        except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
            # local cancellation still goes through
            logger.error("stripe_cancel_failed", tenant_id=str(tenant.id), error=str(exc))

    sub.status = SubStatus.CANCELED.value
    sub.canceled_at = _utcnow()
    await subs_crud.record_history(
        db,
        sub,
        SubscriptionAction.CANCELED,
        previous_plan=plan,
        previous_expires_at=sub.expires_at,
        reason="Canceled by user",
        triggered_by="user",
    )
    await db.commit()

    logger.info("plan_canceled", tenant_id=str(tenant.id), plan=plan.name)
    contact = await _email_contact(db, tenant)
    if contact is not None:
        await notifications.send_cancellation_email(
            to_email=contact.email,
            user_name=contact.name,
            plan_name=plan.name,
            access_until=sub.expires_at,
        )

    return SubscriptionActionResponse(
        success=True,
        message=f"{plan.name} plan canceled",
        status=sub.status,
        expires_at=sub.expires_at,
    )


@router.post("/reactivate", response_model=UpgradeResponse)
async def reactivate_plan(
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> UpgradeResponse:
    sub, plan = await _subscription_or_404(db, tenant, for_update=True)
    if sub.status != SubStatus.CANCELED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only canceled subscriptions can be reactivated")

    now = _utcnow()
    previous_expires_at = sub.expires_at
    sub.status = SubStatus.ACTIVE.value
    sub.expires_at = now + timedelta(days=DEFAULT_RENEWAL_DAYS)
    sub.renewed_at = now
    sub.canceled_at = None
    await subs_crud.record_history(
        db,
        sub,
        SubscriptionAction.REACTIVATED,
        previous_plan=plan,
        new_plan=plan,
        previous_expires_at=previous_expires_at,
        reason="Reactivated by user",
        triggered_by="user",
    )
    await db.commit()

    logger.info("plan_reactivated", tenant_id=str(tenant.id), plan=plan.name)
    await notify_upgrade(
        db, tenant.id, old_plan=f"{plan.name} (canceled)", new_plan=plan, next_billing_date=sub.expires_at
    )

    return UpgradeResponse(
        success=True,
        message=f"{plan.name} plan reactivated",
        new_plan=_plan_info(plan, sub),
        next_billing_date=sub.expires_at,
    )


# ---------------------------------------------------------
# Stripe
# ---------------------------------------------------------
@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> CheckoutSessionResponse:
    plan = await subs_crud.get_plan_by_stripe_price_id(db, payload.price_id)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")

    found = await subs_crud.get_subscription_with_plan(db, tenant.id)
    sub, current_plan = found if found else (None, None)

    if (
        sub is not None
        and sub.status == SubStatus.ACTIVE.value
        and not current_plan.is_free
        and sub.stripe_subscription_id
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="This account already has an active paid subscription. Use the billing portal to manage it.",
        )

    try:
        customer_id = sub.stripe_customer_id if sub is not None else None
        if not customer_id:
            contact = await get_tenant_contact(db, tenant.id)
            if contact is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active user to bill")
            customer = await stripe_gateway.create_customer(
                email=contact.email, name=tenant.name, metadata={"tenantId": str(tenant.id)}
            )
            customer_id = customer["id"]
            if sub is not None:
                sub.stripe_customer_id = customer_id
                await db.commit()

        session = await stripe_gateway.create_subscription_checkout(
            customer_id=customer_id,
            price_id=payload.price_id,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
            metadata={"tenantId": str(tenant.id), "plan": plan.name},
        )
    except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
        logger.error("stripe_checkout_failed", tenant_id=str(tenant.id), error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "payment_gateway_error", "message": "Could not start checkout."},
        )

    return CheckoutSessionResponse(session_id=session["id"], url=session.get("url"))


@router.post("/verify-checkout", response_model=VerifyCheckoutResponse, response_model_exclude_none=True)
async def verify_checkout(
    payload: VerifyCheckoutRequest,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> VerifyCheckoutResponse:
    """
    Sync a finished Checkout into the subscription without waiting for the webhook.
    Stripe-side states are reported in the body, never raised.
    """
    try:
        session = await stripe_gateway.retrieve_checkout_session(payload.session_id)
        if (session.get("metadata") or {}).get("tenantId") != str(tenant.id):
            logger.warning("verify_checkout_foreign_session", tenant_id=str(tenant.id), session_id=payload.session_id)
            return VerifyCheckoutResponse(success=False, message="Checkout session does not belong to this account")
        if session.get("status") != "complete" or session.get("payment_status") != "paid":
            return VerifyCheckoutResponse(success=False, message="Payment was not completed")

        stripe_sub_id = session.get("subscription")
        if isinstance(stripe_sub_id, dict):
            stripe_sub_id = stripe_sub_id.get("id")
        if not stripe_sub_id:
            return VerifyCheckoutResponse(success=False, message="No subscription found in the checkout session")

        price_id = await stripe_gateway.first_line_item_price_id(payload.session_id)
    except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
        logger.error("verify_checkout_stripe_error", tenant_id=str(tenant.id), error=str(exc))
        return VerifyCheckoutResponse(success=False, message="Could not verify the checkout with Stripe")

    if not price_id:
        return VerifyCheckoutResponse(success=False, message="Price not found in the checkout session")

    plan = await subs_crud.get_plan_by_stripe_price_id(db, price_id)
    if plan is None:
        return VerifyCheckoutResponse(success=False, message="No plan matches this price")

    found = await subs_crud.get_subscription_with_plan(db, tenant.id)
    if found is None:
        return VerifyCheckoutResponse(success=False, message="Subscription not found for this account")
    old_plan_name = found[1].name

    customer = session.get("customer")
    expires_at = expiry_for_billing_period(plan.billing_period_days)
    await upsert_subscription(
        db,
        tenant_id=tenant.id,
        plan=plan,
        status=SubStatus.ACTIVE,
        expires_at=expires_at,
        started_at=_utcnow(),
        stripe_customer_id=customer.get("id") if isinstance(customer, dict) else customer,
        stripe_subscription_id=stripe_sub_id,
        triggered_by="verify-checkout",
        reason=f"Checkout session: {payload.session_id}",
    )
    await db.commit()

    logger.info("checkout_verified", tenant_id=str(tenant.id), plan=plan.name)
    await notify_upgrade(db, tenant.id, old_plan=old_plan_name, new_plan=plan, next_billing_date=expires_at)
    return VerifyCheckoutResponse(success=True, message=f"Plan updated to {plan.name}", plan=plan.name)


@router.post("/billing-portal", response_model=BillingPortalResponse)
async def billing_portal(
    payload: BillingPortalRequest,
    db: AsyncSession = Depends(get_db),
    tenant: Tenant = Depends(require_billing_manage),
) -> BillingPortalResponse:
    sub, _ = await _subscription_or_404(db, tenant)
    if not sub.stripe_customer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No Stripe customer for this account")

    try:
        portal = await stripe_gateway.create_billing_portal_session(
            customer_id=sub.stripe_customer_id, return_url=payload.return_url
        )
    except stripe_gateway.InvalidRequestError as exc:
        if getattr(exc, "code", None) == "resource_missing":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Stripe customer not found. Start a new checkout.",
            )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Could not open the billing portal")
    except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
        logger.error("billing_portal_failed", tenant_id=str(tenant.id), error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "payment_gateway_error", "message": "Could not open the billing portal."},
        )

    return BillingPortalResponse(url=portal["url"])
