# backend/talentloop/api/v1/auth.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core import notifications, stripe_gateway
from talentloop.core.billing import (
    CHECKOUT_SESSION_TTL,
    create_account_user,
    create_company_tenant,
    ensure_subscription,
    handle_checkout_completed,
)
from talentloop.core.config import settings
from talentloop.core.enums import SubStatus, TenantType
from talentloop.core.logging import get_logger
from talentloop.core.plans import SALES_ASSISTED_PLANS, plan_belongs_to
from talentloop.core.roles import RoleType
from talentloop.core.security import (
    bearer_scheme,
    create_access_token,
    decode_access_token,
    generate_url_token,
    hash_password,
    verify_password,
)
from talentloop.core.two_factor import verify_user_token
from talentloop.crud.subscriptions import get_plan_by_name, get_subscription_with_plan
from talentloop.crud.tenants import get_or_create_candidates_tenant, get_tenant_by_id_or_slug, get_tenant_by_slug
from talentloop.crud.users import email_exists_anywhere, get_user_by_email
from talentloop.db.session import get_db
from talentloop.models.password_reset import PasswordReset
from talentloop.models.plan import Plan
from talentloop.models.stripe_checkout_session import StripeCheckoutSession
from talentloop.models.tenant import Tenant
from talentloop.models.user import User
from talentloop.schemas.auth import (
    CandidateSignupRequest,
    ChangePasswordRequest,
    CheckoutSuccessResponse,
    CheckoutVerifyResponse,
    CompanySignupRequest,
    ForgotPasswordRequest,
    MessageResponse,
    ProfileResponse,
    ResetPasswordRequest,
    SignInRequest,
    SignInResponse,
    SignupResponse,
    TenantProfile,
    TokenResponse,
    UserSummary,
)

router = APIRouter(prefix="/auth", tags=["auth"])

logger = get_logger(__name__)

PASSWORD_RESET_EXPIRY = timedelta(hours=1)
DEFAULT_PROFILE_PLAN = "STARTER"

INVALID_CREDENTIALS = "Invalid credentials"
FORGOT_PASSWORD_MESSAGE = "If the email exists, you will receive a link to reset your password."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _issue_token(user: User, tenant: Tenant) -> str:
    return create_access_token(
        subject=str(user.id),
        claims={
            "email": user.email,
            "tenantId": str(tenant.id),
            "tenantSlug": tenant.slug,
            "tenantType": tenant.type,
        },
    )


def _payment_gateway_error(exc: Exception) -> HTTPException:
    logger.error("payment_gateway_error", error=str(exc), error_type=type(exc).__name__)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"code": "payment_gateway_error", "message": "Payment provider is unavailable. Try again later."},
    )


def _with_token(url: str, token: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}token={token}"


async def _load_plan_or_404(db: AsyncSession, name: str) -> Plan:
    plan = await get_plan_by_name(db, name)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Plan {name} not found")
    return plan


async def _domain_held_by_checkout(db: AsyncSession, domain: str, contact_email: str) -> bool:
    """Another visitor has an unexpired, unfinished checkout for this domain."""
    res = await db.execute(
        select(StripeCheckoutSession.id)
        .where(
            StripeCheckoutSession.domain == domain,
            StripeCheckoutSession.completed.is_(False),
            StripeCheckoutSession.expires_at > _utcnow(),
            StripeCheckoutSession.contact_email != User.normalize_email(contact_email),
        )
        .limit(1)
    )
    return res.scalar_one_or_none() is not None


async def _start_signup_checkout(
    db: AsyncSession,
    *,
    plan: Plan,
    customer_name: str,
    company_name: str,
    contact_name: str,
    contact_email: str,
    domain: Optional[str],
    success_url: Optional[str],
    cancel_url: Optional[str],
    metadata: dict[str, str],
) -> SignupResponse:
    """
    Park the signup data and send the visitor to Stripe Checkout. The account is
    created when the checkout completes.
    """
    if not plan.stripe_price_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan {plan.name} is not configured for payment",
        )

    email = User.normalize_email(contact_email)
    await db.execute(
        delete(StripeCheckoutSession).where(
            StripeCheckoutSession.contact_email == email,
            StripeCheckoutSession.completed.is_(False),
        )
    )

    success_token = generate_url_token(32)
    try:
        customer = await stripe_gateway.create_customer(email=email, name=customer_name, metadata=metadata)
        session = await stripe_gateway.create_subscription_checkout(
            customer_id=customer["id"],
            price_id=plan.stripe_price_id,
            success_url=_with_token(success_url or f"{settings.APP_URL}/auth/success", success_token),
            cancel_url=cancel_url or f"{settings.APP_URL}/auth/sign-up?canceled=true",
            metadata={**metadata, "plan": plan.name},
        )
    except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
        await db.rollback()
        raise _payment_gateway_error(exc)

    db.add(
        StripeCheckoutSession(
            session_id=session["id"],
            stripe_customer_id=customer["id"],
            company_name=company_name,
            contact_name=contact_name,
            contact_email=email,
            domain=domain,
            plan_id=plan.id,
            plan_name=plan.name,
            success_token=success_token,
            expires_at=_utcnow() + CHECKOUT_SESSION_TTL,
            completed=False,
        )
    )
    await db.commit()

    logger.info("signup_checkout_started", plan=plan.name, domain=domain, session_id=session["id"])
    return SignupResponse(message="Redirecting to payment...", checkout_url=session.get("url"), is_free=False)


# ---------------------------------------------------------
# Current user
# ---------------------------------------------------------
async def get_token_claims(credentials=Depends(bearer_scheme)) -> dict[str, Any]:
    return decode_access_token(credentials.credentials)


async def get_current_user(
    claims: dict[str, Any] = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency for protected endpoints.
    """
    try:
        user_uuid = uuid.UUID(str(claims["sub"]))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    user = await db.get(User, user_uuid)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    if not user.can_sign_in:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User inactive")

    if claims.get("tenantId") != str(user.tenant_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token tenant does not match user")

    return user


# ---------------------------------------------------------
# Signup
# ---------------------------------------------------------
@router.post("/signup/candidate", response_model=SignupResponse, response_model_exclude_none=True)
async def signup_candidate(payload: CandidateSignupRequest, db: AsyncSession = Depends(get_db)) -> SignupResponse:
    """
    FREE: account created right away, credentials emailed.
    Paid plans: Stripe checkout, account created on completion.
    """
    tenant = await get_or_create_candidates_tenant(db)

    if await get_user_by_email(db, tenant.id, payload.email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This email is already registered")

    plan = await _load_plan_or_404(db, payload.plan)
    if not plan_belongs_to(plan.name, TenantType.CANDIDATE):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Plan {plan.name} is not a candidate plan")

    if not plan.is_free:
        return await _start_signup_checkout(
            db,
            plan=plan,
            customer_name=payload.name,
            company_name=payload.name,
            contact_name=payload.name,
            contact_email=payload.email,
            domain=None,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
            metadata={"tenantId": str(tenant.id)},
        )

    user, password = await create_account_user(db, tenant=tenant, name=payload.name, email=payload.email)
    await ensure_subscription(db, tenant_id=tenant.id, plan=plan, triggered_by="user", reason="Candidate signup")
    await db.commit()

    logger.info("candidate_signup_free", user_id=str(user.id))
    await notifications.send_welcome_email(
        to_email=user.email,
        user_name=user.name,
        password=password,
        plan_name=plan.name,
    )

    return SignupResponse(
        message="Account created! Check your email to sign in.",
        token=_issue_token(user, tenant),
        is_free=True,
    )


@router.post("/signup/company", response_model=SignupResponse, response_model_exclude_none=True)
async def signup_company(payload: CompanySignupRequest, db: AsyncSession = Depends(get_db)) -> SignupResponse:
    """
    STARTUP / BUSINESS go through Stripe checkout.
    ENTERPRISE is sales-assisted: the account is created inactive with a PENDING subscription.
    """
    if await get_tenant_by_slug(db, payload.domain):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This domain is already in use")
    if await _domain_held_by_checkout(db, Tenant.normalize_slug(payload.domain), payload.contact_email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This domain is already in use")

    if await email_exists_anywhere(db, payload.contact_email):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This email is already registered")

    plan = await _load_plan_or_404(db, payload.plan)
    if not plan_belongs_to(plan.name, TenantType.COMPANY):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Plan {plan.name} is not a company plan")

    if plan.name in SALES_ASSISTED_PLANS:
        tenant = await create_company_tenant(db, name=payload.company_name, slug=payload.domain)
        await create_account_user(
            db,
            tenant=tenant,
            name=payload.contact_name,
            email=payload.contact_email,
            role=RoleType.OWNER,
            is_active=False,
        )
        await ensure_subscription(
            db,
            tenant_id=tenant.id,
            plan=plan,
            status=SubStatus.PENDING,
            triggered_by="user",
            reason="Enterprise request",
        )
        await db.commit()

        logger.info("enterprise_request_created", tenant_id=str(tenant.id))
        return SignupResponse(message="Request received! Our team will contact you within 24 hours.")

    return await _start_signup_checkout(
        db,
        plan=plan,
        customer_name=payload.company_name,
        company_name=payload.company_name,
        contact_name=payload.contact_name,
        contact_email=payload.contact_email,
        domain=Tenant.normalize_slug(payload.domain),
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        metadata={"domain": Tenant.normalize_slug(payload.domain)},
    )


@router.get("/checkout/verify", response_model=CheckoutVerifyResponse)
async def verify_signup_checkout(
    session_id: str = Query(alias="sessionId", min_length=1),
    db: AsyncSession = Depends(get_db),
) -> CheckoutVerifyResponse:
    """
    Fallback for when the webhook has not arrived yet: ask Stripe directly.
    """
    try:
        session = await stripe_gateway.retrieve_checkout_session(session_id)
    except stripe_gateway.InvalidRequestError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout session not found")
    except (stripe_gateway.StripeError, stripe_gateway.StripeNotConfigured) as exc:
        raise _payment_gateway_error(exc)

    if session.get("payment_status") != "paid" and session.get("status") != "complete":
        return CheckoutVerifyResponse(success=False, message="Payment not completed yet")

    sub_id = session.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    checkout = await handle_checkout_completed(db, session_id, stripe_subscription_id=sub_id)
    if checkout is None:
        return CheckoutVerifyResponse(success=False, message="Checkout session not recognised")
    return CheckoutVerifyResponse(success=True, message="Account created. Check your email to sign in.")


@router.get("/checkout/success", response_model=CheckoutSuccessResponse, response_model_exclude_none=True)
async def checkout_success(
    token: str = Query(min_length=16, max_length=128),
    db: AsyncSession = Depends(get_db),
) -> CheckoutSuccessResponse:
    res = await db.execute(select(StripeCheckoutSession).where(StripeCheckoutSession.success_token == token))
    checkout = res.scalar_one_or_none()
    if checkout is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout not found")
    return CheckoutSuccessResponse(
        completed=bool(checkout.completed),
        plan=checkout.plan_name,
        email=checkout.contact_email,
    )


# ---------------------------------------------------------
# Sign in
# ---------------------------------------------------------
@router.post("/signin", response_model=SignInResponse, response_model_exclude_none=True)
async def signin(payload: SignInRequest, db: AsyncSession = Depends(get_db)) -> SignInResponse:
    tenant = await get_tenant_by_id_or_slug(db, payload.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    user = await get_user_by_email(db, tenant.id, payload.email)
    if user is None or not user.can_sign_in or not verify_password(payload.password, user.password_hash):
        logger.info("signin_failed", tenant_id=str(tenant.id))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    if user.two_factor_enabled:
        if not payload.two_factor_token:
            return SignInResponse(
                requires_two_factor=True,
                user_id=user.id,
                message="Two-factor authentication code required",
            )
        if not verify_user_token(user, payload.two_factor_token):
            logger.info("signin_2fa_failed", user_id=str(user.id))
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid two-factor code")
        # a consumed backup code must be persisted
        await db.commit()

    logger.info("signin_succeeded", user_id=str(user.id), tenant_id=str(tenant.id))
    return SignInResponse(
        requires_two_factor=False,
        access_token=_issue_token(user, tenant),
        token_type="bearer",
        tenant_type=tenant.type,
        user=UserSummary(id=user.id, name=user.name, email=user.email),
    )


@router.get("/profile", response_model=ProfileResponse)
async def profile(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> ProfileResponse:
    tenant = await db.get(Tenant, user.tenant_id)
    current = await get_subscription_with_plan(db, user.tenant_id)
    sub, plan = current if current else (None, None)

    return ProfileResponse(
        user_id=user.id,
        email=user.email,
        name=user.name,
        avatar=user.avatar,
        tenant_id=tenant.id,
        tenant_type=tenant.type,
        tenant=TenantProfile(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            plan=plan.name if plan else DEFAULT_PROFILE_PLAN,
            plan_expires_at=sub.expires_at if sub else None,
        ),
    )


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(payload: ForgotPasswordRequest, db: AsyncSession = Depends(get_db)) -> MessageResponse:
    """
    Same answer whether or not the account exists.
    """
    tenant = await get_tenant_by_id_or_slug(db, payload.tenant_id)
    user = await get_user_by_email(db, tenant.id, payload.email) if tenant else None

    if user is None or not user.can_sign_in:
        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    now = _utcnow()
    await db.execute(
        update(PasswordReset)
        .where(PasswordReset.user_id == user.id)
        .where(PasswordReset.used_at.is_(None))
        .values(used_at=now)
    )
    token = generate_url_token(32)
    db.add(PasswordReset(user_id=user.id, token=token, expires_at=now + PASSWORD_RESET_EXPIRY))
    await db.commit()

    logger.info("password_reset_requested", user_id=str(user.id))
    await notifications.send_password_reset_email(to_email=user.email, user_name=user.name, token=token)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(payload: ResetPasswordRequest, db: AsyncSession = Depends(get_db)) -> MessageResponse:
    res = await db.execute(select(PasswordReset).where(PasswordReset.token == payload.token).with_for_update())
    reset = res.scalar_one_or_none()

    now = _utcnow()
    if reset is None or reset.used_at is not None or reset.expires_at < now:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired token")

    user = await db.get(User, reset.user_id)
    if user is None or not user.can_sign_in:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired token")

    user.password_hash = hash_password(payload.new_password)
    reset.used_at = now
    await db.commit()

    logger.info("password_reset_completed", user_id=str(user.id))
    return MessageResponse(message="Password reset successfully")


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MessageResponse:
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    await db.commit()

    logger.info("password_changed", user_id=str(user.id))
    return MessageResponse(message="Password changed successfully")


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TokenResponse:
    tenant = await db.get(Tenant, user.tenant_id)
    return TokenResponse(access_token=_issue_token(user, tenant))
