# tests/test_auth_api.py
from __future__ import annotations

import html
import re
import uuid

import pyotp
import pytest
from sqlalchemy import select

from conftest import auth_headers, configure_price_ids, make_candidate, make_company
from talentloop.core import stripe_gateway
from talentloop.core.enums import SubStatus
from talentloop.core.security import create_access_token
from talentloop.core.two_factor import generate_secret
from talentloop.crud.roles import get_user_role
from talentloop.crud.subscriptions import get_subscription_with_plan
from talentloop.crud.tenants import get_tenant_by_slug
from talentloop.crud.users import get_user_by_email
from talentloop.models.password_reset import PasswordReset
from talentloop.models.stripe_checkout_session import StripeCheckoutSession
from talentloop.models.tenant import Tenant

pytestmark = pytest.mark.asyncio(loop_scope="session")

_PASSWORD_RE = re.compile(r"Temporary password: <code>(.*?)</code>")


def emailed_password(email: dict) -> str:
    return html.unescape(_PASSWORD_RE.search(email["html"]).group(1))


# ---------------------------------------------------------
# Candidate signup
# ---------------------------------------------------------
async def test_free_candidate_signup_then_signin(client, db, sent_emails):
    r = await client.post(
        "/api/v1/auth/signup/candidate",
        json={"name": "  Ana   Souza ", "email": "Ana@Example.com"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["isFree"] is True
    assert body["token"]
    assert "checkoutUrl" not in body

    [welcome] = sent_emails
    assert welcome["to"] == "ana@example.com"
    password = emailed_password(welcome)

    r = await client.post("/api/v1/auth/signin", json={"email": "ana@example.com", "password": password})
    assert r.status_code == 200, r.text
    signin = r.json()
    assert signin["requiresTwoFactor"] is False
    assert signin["token_type"] == "bearer"
    assert signin["tenantType"] == "CANDIDATE"
    assert signin["user"]["name"] == "Ana Souza"

    r = await client.get("/api/v1/auth/profile", headers={"Authorization": f"Bearer {signin['access_token']}"})
    assert r.status_code == 200
    profile = r.json()
    assert profile["tenant"]["slug"] == "candidates"
    assert profile["tenant"]["plan"] == "FREE"
    assert profile["tenantType"] == "CANDIDATE"


async def test_candidate_email_must_be_unique(client, db):
    await make_candidate(db, email="ana@example.com")
    r = await client.post("/api/v1/auth/signup/candidate", json={"name": "Ana", "email": "ANA@example.com"})
    assert r.status_code == 409


async def test_candidate_cannot_pick_company_plan(client, db):
    r = await client.post(
        "/api/v1/auth/signup/candidate",
        json={"name": "Ana", "email": "ana@example.com", "plan": "BUSINESS"},
    )
    assert r.status_code == 400


async def test_unknown_plan_is_404(client, db):
    r = await client.post(
        "/api/v1/auth/signup/candidate",
        json={"name": "Ana", "email": "ana@example.com", "plan": "GOLD"},
    )
    assert r.status_code == 404


async def test_paid_candidate_signup_completes_after_payment(client, db, fake_stripe, sent_emails):
    await configure_price_ids(db)

    r = await client.post(
        "/api/v1/auth/signup/candidate",
        json={"name": "Ana", "email": "ana@example.com", "plan": "pro", "successUrl": "https://app.test/ok"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["isFree"] is False
    assert body["checkoutUrl"].startswith("https://checkout.stripe.test/")
    assert sent_emails == []

    [checkout_call] = fake_stripe.called("create_subscription_checkout")
    assert checkout_call["price_id"] == "price_test_pro"
    assert checkout_call["success_url"].startswith("https://app.test/ok?token=")
    assert checkout_call["metadata"]["plan"] == "PRO"

    res = await db.execute(select(StripeCheckoutSession))
    parked = res.scalar_one()
    assert parked.completed is False
    tenant = await get_tenant_by_slug(db, "candidates")
    assert await get_user_by_email(db, tenant.id, "ana@example.com") is None

    r = await client.get("/api/v1/auth/checkout/success", params={"token": parked.success_token})
    assert r.json() == {"completed": False, "plan": "PRO", "email": "ana@example.com"}

    r = await client.get("/api/v1/auth/checkout/verify", params={"sessionId": parked.session_id})
    assert r.json()["success"] is False

    session = fake_stripe.checkout_sessions[parked.session_id]
    session.update(status="complete", payment_status="paid", subscription="sub_pro_1")
    r = await client.get("/api/v1/auth/checkout/verify", params={"sessionId": parked.session_id})
    assert r.json()["success"] is True

    user = await get_user_by_email(db, tenant.id, "ana@example.com")
    assert user is not None
    sub, plan = await get_subscription_with_plan(db, tenant.id)
    assert plan.name == "PRO"
    assert sub.stripe_subscription_id == "sub_pro_1"
    assert len(sent_emails) == 1

    # a second verification does not create another account or email
    r = await client.get("/api/v1/auth/checkout/verify", params={"sessionId": parked.session_id})
    assert r.json()["success"] is True
    assert len(sent_emails) == 1


async def test_checkout_verify_unknown_session_is_404(client, db, fake_stripe):
    r = await client.get("/api/v1/auth/checkout/verify", params={"sessionId": "cs_missing"})
    assert r.status_code == 404


async def test_payment_gateway_failure_is_502(client, db, fake_stripe):
    await configure_price_ids(db)
    fake_stripe.fail_with = stripe_gateway.StripeError("stripe down")

    r = await client.post(
        "/api/v1/auth/signup/candidate",
        json={"name": "Ana", "email": "ana@example.com", "plan": "PREMIUM"},
    )
    assert r.status_code == 502
    assert r.json()["detail"]["code"] == "payment_gateway_error"


# ---------------------------------------------------------
# Company signup
# ---------------------------------------------------------
async def test_enterprise_signup_is_sales_assisted(client, db, sent_emails):
    r = await client.post(
        "/api/v1/auth/signup/company",
        json={
            "companyName": "Mega Corp",
            "contactName": "Carla Lima",
            "contactEmail": "carla@mega.com",
            "domain": "Mega",
            "plan": "ENTERPRISE",
        },
    )
    assert r.status_code == 200, r.text
    assert "contact you" in r.json()["message"]

    tenant = await get_tenant_by_slug(db, "mega")
    assert tenant.type == "COMPANY"
    user = await get_user_by_email(db, tenant.id, "carla@mega.com")
    assert user.is_active is False
    _, role = await get_user_role(db, user.id, tenant.id)
    assert role.name == "OWNER"
    sub, plan = await get_subscription_with_plan(db, tenant.id)
    assert (plan.name, sub.status) == ("ENTERPRISE", SubStatus.PENDING.value)
    assert sent_emails == []


async def test_company_domain_and_email_must_be_free(client, db):
    await make_company(db, slug="acme", owner_email="owner@acme.com")
    base = {"companyName": "Acme 2", "contactName": "Bob", "plan": "STARTUP"}

    r = await client.post("/api/v1/auth/signup/company", json={**base, "contactEmail": "bob@acme2.com", "domain": "ACME"})
    assert r.status_code == 409

    r = await client.post("/api/v1/auth/signup/company", json={**base, "contactEmail": "owner@acme.com", "domain": "acme2"})
    assert r.status_code == 409

    r = await client.post("/api/v1/auth/signup/company", json={**base, "contactEmail": "x@y.com", "domain": "candidates"})
    assert r.status_code == 422


async def test_company_checkout_creates_tenant_and_owner(client, db, fake_stripe, sent_emails):
    await configure_price_ids(db)
    r = await client.post(
        "/api/v1/auth/signup/company",
        json={
            "companyName": "Acme",
            "contactName": "Olivia",
            "contactEmail": "olivia@acme.com",
            "domain": "acme",
            "plan": "BUSINESS",
        },
    )
    assert r.status_code == 200, r.text
    assert await get_tenant_by_slug(db, "acme") is None

    [session_id] = list(fake_stripe.checkout_sessions)
    fake_stripe.checkout_sessions[session_id].update(status="complete", payment_status="paid", subscription="sub_biz")
    r = await client.get("/api/v1/auth/checkout/verify", params={"sessionId": session_id})
    assert r.json()["success"] is True

    tenant = await get_tenant_by_slug(db, "acme")
    owner = await get_user_by_email(db, tenant.id, "olivia@acme.com")
    _, role = await get_user_role(db, owner.id, tenant.id)
    assert role.name == "OWNER"
    _, plan = await get_subscription_with_plan(db, tenant.id)
    assert plan.name == "BUSINESS"

    [welcome] = sent_emails
    assert "<code>acme</code>" in welcome["html"]

    r = await client.post(
        "/api/v1/auth/signin",
        json={"email": "olivia@acme.com", "password": emailed_password(welcome), "tenantId": "acme"},
    )
    assert r.status_code == 200
    assert r.json()["tenantType"] == "COMPANY"


async def test_pending_checkout_holds_company_domain(client, db, fake_stripe):
    await configure_price_ids(db)
    base = {"companyName": "Acme", "contactName": "Olivia", "domain": "acme", "plan": "STARTUP"}

    r = await client.post("/api/v1/auth/signup/company", json={**base, "contactEmail": "olivia@acme.com"})
    assert r.status_code == 200, r.text

    r = await client.post(
        "/api/v1/auth/signup/company",
        json={**base, "companyName": "Not Acme", "contactEmail": "mallory@evil.com", "domain": "ACME"},
    )
    assert r.status_code == 409
    assert len(fake_stripe.checkout_sessions) == 1

    # the same visitor may restart their own checkout
    r = await client.post("/api/v1/auth/signup/company", json={**base, "contactEmail": "olivia@acme.com"})
    assert r.status_code == 200, r.text


# ---------------------------------------------------------
# Sign in
# ---------------------------------------------------------
async def test_signin_rejects_bad_credentials_and_inactive_users(client, db):
    tenant, user, password = await make_company(db)

    r = await client.post("/api/v1/auth/signin", json={"email": user.email, "password": "Wrong#123", "tenantId": "acme"})
    assert r.status_code == 401

    r = await client.post("/api/v1/auth/signin", json={"email": user.email, "password": password, "tenantId": "nope"})
    assert r.status_code == 401

    r = await client.post(
        "/api/v1/auth/signin", json={"email": user.email, "password": password, "tenantId": str(tenant.id)}
    )
    assert r.status_code == 200

    user.is_active = False
    await db.commit()
    r = await client.post("/api/v1/auth/signin", json={"email": user.email, "password": password, "tenantId": "acme"})
    assert r.status_code == 401


async def test_signin_with_two_factor(client, db):
    tenant, user, password = await make_candidate(db)
    secret = generate_secret()
    user.two_factor_enabled = True
    user.two_factor_secret = secret
    user.two_factor_backup_codes = ["A1B2C3D4"]
    await db.commit()

    creds = {"email": user.email, "password": password}
    r = await client.post("/api/v1/auth/signin", json=creds)
    body = r.json()
    assert body["requiresTwoFactor"] is True
    assert body["userId"] == str(user.id)
    assert "access_token" not in body

    r = await client.post("/api/v1/auth/signin", json={**creds, "twoFactorToken": "999999"})
    assert r.status_code == 401

    r = await client.post("/api/v1/auth/signin", json={**creds, "twoFactorToken": pyotp.TOTP(secret).now()})
    assert r.status_code == 200
    assert r.json()["access_token"]

    r = await client.post("/api/v1/auth/signin", json={**creds, "twoFactorToken": "a1b2c3d4"})
    assert r.status_code == 200
    await db.refresh(user)
    assert user.two_factor_backup_codes == []


async def test_token_for_another_tenant_is_rejected(client, db):
    tenant, user, _ = await make_candidate(db)
    forged = create_access_token(subject=str(user.id), claims={"tenantId": str(uuid.uuid4())})
    r = await client.get("/api/v1/auth/profile", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 401


async def test_profile_defaults_plan_when_tenant_has_no_subscription(client, db):
    from talentloop.core.billing import create_account_user

    tenant = Tenant(name="Bare", slug="bare", type="COMPANY")
    db.add(tenant)
    await db.flush()
    user, _ = await create_account_user(db, tenant=tenant, name="Bare User", email="bare@bare.com")
    await db.commit()

    r = await client.get("/api/v1/auth/profile", headers=auth_headers(user, tenant))
    assert r.status_code == 200
    assert r.json()["tenant"]["plan"] == "STARTER"


async def test_refresh_issues_a_new_token(client, db):
    tenant, user, _ = await make_candidate(db)
    r = await client.post("/api/v1/auth/refresh", headers=auth_headers(user, tenant))
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"]


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
async def test_forgot_password_does_not_reveal_accounts(client, db, sent_emails):
    r = await client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})
    assert r.status_code == 200
    unknown_message = r.json()["message"]

    await make_candidate(db, email="ana@example.com")
    r = await client.post("/api/v1/auth/forgot-password", json={"email": "ana@example.com"})
    assert r.json()["message"] == unknown_message
    assert len(sent_emails) == 1
    assert "reset-password?token=" in sent_emails[0]["html"]


async def test_reset_password_token_is_single_use(client, db):
    tenant, user, _ = await make_candidate(db, email="ana@example.com")
    await client.post("/api/v1/auth/forgot-password", json={"email": "ana@example.com"})
    reset = (await db.execute(select(PasswordReset).where(PasswordReset.user_id == user.id))).scalar_one()

    r = await client.post("/api/v1/auth/reset-password", json={"token": reset.token, "newPassword": "weak"})
    assert r.status_code == 422

    r = await client.post("/api/v1/auth/reset-password", json={"token": reset.token, "newPassword": "N3w!Pass"})
    assert r.status_code == 200

    r = await client.post("/api/v1/auth/reset-password", json={"token": reset.token, "newPassword": "N3w!Pass2"})
    assert r.status_code == 400

    r = await client.post("/api/v1/auth/signin", json={"email": "ana@example.com", "password": "N3w!Pass"})
    assert r.status_code == 200


async def test_new_reset_request_invalidates_previous_token(client, db):
    tenant, user, _ = await make_candidate(db, email="ana@example.com")
    await client.post("/api/v1/auth/forgot-password", json={"email": "ana@example.com"})
    first = (await db.execute(select(PasswordReset.token))).scalar_one()
    await client.post("/api/v1/auth/forgot-password", json={"email": "ana@example.com"})

    r = await client.post("/api/v1/auth/reset-password", json={"token": first, "newPassword": "N3w!Pass"})
    assert r.status_code == 400


async def test_change_password(client, db):
    tenant, user, password = await make_candidate(db)
    headers = auth_headers(user, tenant)

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"currentPassword": "Wrong#123", "newPassword": "N3w!Pass"},
        headers=headers,
    )
    assert r.status_code == 401

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"currentPassword": password, "newPassword": "N3w!Pass"},
        headers=headers,
    )
    assert r.status_code == 200

    r = await client.post("/api/v1/auth/signin", json={"email": user.email, "password": "N3w!Pass"})
    assert r.status_code == 200


async def test_change_password_rejects_passwords_bcrypt_would_truncate(client, db):
    tenant, user, password = await make_candidate(db)

    r = await client.post(
        "/api/v1/auth/change-password",
        json={"currentPassword": password, "newPassword": "Aa" + "\U0001D7CE" * 18},
        headers=auth_headers(user, tenant),
    )
    assert r.status_code == 422
