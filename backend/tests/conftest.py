from __future__ import annotations

import os

# Settings are read at import time.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LIMIT_MONITOR_ENABLED", "false")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import uuid
import asyncio
from typing import Any, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from talentloop.db.session import get_db

# Ensure Base + models are registered before create_all
from talentloop.db.base import Base  # noqa: F401
import talentloop.models  # noqa: F401

from talentloop.core import mailer, stripe_gateway
from talentloop.core.billing import create_account_user, ensure_subscription
from talentloop.core.enums import TenantType
from talentloop.core.roles import RoleType
from talentloop.core.security import create_access_token
from talentloop.crud.tenants import get_or_create_candidates_tenant
from talentloop.db.seed import seed_plans, seed_roles
from talentloop.models.tenant import Tenant
from talentloop.models.user import User


# ---------------------------------------------------------
# Database config
# ---------------------------------------------------------
@pytest.fixture(scope="session")
def database_url_async() -> str:
    url = os.getenv("DATABASE_URL_ASYNC")
    if not url:
        pytest.skip("DATABASE_URL_ASYNC is not set; skipping database tests")
    return url


@pytest.fixture(scope="session")
def test_schema_name() -> str:
    return f"test_{uuid.uuid4().hex}"


# ---------------------------------------------------------
# Engine + schema lifecycle (CI-safe with retry)
# ---------------------------------------------------------
@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def engine(database_url_async: str, test_schema_name: str):
    engine = create_async_engine(
        database_url_async,
        future=True,
        echo=False,
        poolclass=NullPool,
        connect_args={"server_settings": {"search_path": test_schema_name}},
    )

    last_exc = None
    for _ in range(30):  # ~30 seconds max wait
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            last_exc = None
            break
        except Exception as e:
            last_exc = e
            await asyncio.sleep(1)

    if last_exc is not None:
        raise RuntimeError(f"Database not reachable for tests: {last_exc}") from last_exc

    async with engine.begin() as conn:
        await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{test_schema_name}"'))
        await conn.execute(text(f'SET search_path TO "{test_schema_name}"'))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.execute(text(f'DROP SCHEMA IF EXISTS "{test_schema_name}" CASCADE'))

    await engine.dispose()


@pytest.fixture(scope="session")
def sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(loop_scope="session")
async def clean_db(engine, sessionmaker, test_schema_name: str):
    """
    Every database test starts from empty tables plus the seeded plans and roles.
    """
    async with engine.begin() as conn:
        await conn.execute(text(f'SET search_path TO "{test_schema_name}"'))

        table_names = [t.name for t in Base.metadata.sorted_tables]
        if table_names:
            qualified = ", ".join(f'"{test_schema_name}"."{name}"' for name in table_names)
            await conn.execute(text(f"TRUNCATE TABLE {qualified} RESTART IDENTITY CASCADE;"))

    async with sessionmaker() as session:
        await seed_plans(session)
        await seed_roles(session)
        await session.commit()

    yield


# ---------------------------------------------------------
# DB session for assertions / setup
# ---------------------------------------------------------
@pytest_asyncio.fixture(loop_scope="session")
async def db(sessionmaker, clean_db):
    """
    Session for test setup & assertions ONLY.
    """
    async with sessionmaker() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------
# Outbound services
# ---------------------------------------------------------
@pytest.fixture(autouse=True)
def sent_emails(monkeypatch) -> list[dict[str, Any]]:
    """
    Captures every outgoing email instead of talking to SMTP.
    """
    sent: list[dict[str, Any]] = []

    async def _fake_send(to_email: str, subject: str, html: str) -> bool:
        sent.append({"to": to_email, "subject": subject, "html": html})
        return True

    monkeypatch.setattr(mailer, "send_email", _fake_send)
    return sent


class FakeStripe:
    """
    Records gateway calls and answers with canned Stripe-shaped dicts.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.checkout_sessions: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.fail_with: Optional[Exception] = None

    def _record(self, call: str, **kwargs) -> None:
        self.calls.append((call, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    def called(self, name: str) -> list[dict[str, Any]]:
        return [kw for n, kw in self.calls if n == name]

    async def create_customer(self, *, email, name, metadata=None):
        self._record("create_customer", email=email, name=name, metadata=metadata)
        return {"id": f"cus_{uuid.uuid4().hex[:12]}", "email": email}

    async def create_subscription_checkout(self, *, customer_id, price_id, success_url, cancel_url, metadata):
        self._record(
            "create_subscription_checkout",
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        session_id = f"cs_test_{uuid.uuid4().hex[:12]}"
        session = {
            "id": session_id,
            "url": f"https://checkout.stripe.test/{session_id}",
            "customer": customer_id,
            "status": "open",
            "payment_status": "unpaid",
            "metadata": metadata,
        }
        self.checkout_sessions[session_id] = session
        return session

    async def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id=session_id)
        if session_id not in self.checkout_sessions:
            raise stripe_gateway.InvalidRequestError("No such checkout session", param="id")
        return self.checkout_sessions[session_id]

    async def first_line_item_price_id(self, session_id):
        self._record("first_line_item_price_id", session_id=session_id)
        return None

    async def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id=subscription_id)
        return self.subscriptions[subscription_id]

    async def change_subscription_price(self, subscription_id, price_id):
        self._record("change_subscription_price", subscription_id=subscription_id, price_id=price_id)
        sub = self.subscriptions.setdefault(subscription_id, {"id": subscription_id, "status": "active"})
        sub["items"] = {"data": [{"price": {"id": price_id}}]}
        return sub

    async def cancel_subscription(self, subscription_id):
        self._record("cancel_subscription", subscription_id=subscription_id)
        return {"id": subscription_id, "status": "canceled"}

    async def create_billing_portal_session(self, *, customer_id, return_url):
        self._record("create_billing_portal_session", customer_id=customer_id, return_url=return_url)
        return {"url": f"https://billing.stripe.test/{customer_id}"}


@pytest.fixture()
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    for name in (
        "create_customer",
        "create_subscription_checkout",
        "retrieve_checkout_session",
        "first_line_item_price_id",
        "retrieve_subscription",
        "change_subscription_price",
        "cancel_subscription",
        "create_billing_portal_session",
    ):
        monkeypatch.setattr(stripe_gateway, name, getattr(fake, name))
    return fake


# ---------------------------------------------------------
# FastAPI app + dependency override
# ---------------------------------------------------------
@pytest.fixture()
def app(sessionmaker, clean_db):
    from talentloop.main import app as fastapi_app

    async def _override_get_db():
        async with sessionmaker() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture(loop_scope="session")
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(loop_scope="session")
async def api_client():
    """
    Client for routes that fail before touching the database.
    """
    from talentloop.main import app as fastapi_app

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------
# Account helpers
# ---------------------------------------------------------
def auth_headers(user: User, tenant: Tenant) -> dict[str, str]:
    token = create_access_token(
        subject=str(user.id),
        claims={
            "email": user.email,
            "tenantId": str(tenant.id),
            "tenantSlug": tenant.slug,
            "tenantType": tenant.type,
        },
    )
    return {"Authorization": f"Bearer {token}"}


async def make_candidate(db, *, email: str = "ana@example.com", plan_name: str = "FREE"):
    """
    Returns (tenant, user, password) for a candidate on plan_name.
    """
    from talentloop.crud.subscriptions import get_plan_by_name

    tenant = await get_or_create_candidates_tenant(db)
    user, password = await create_account_user(db, tenant=tenant, name="Ana Souza", email=email)
    plan = await get_plan_by_name(db, plan_name)
    await ensure_subscription(db, tenant_id=tenant.id, plan=plan)
    await db.commit()
    return tenant, user, password


async def make_company(
    db,
    *,
    slug: str = "acme",
    plan_name: str = "STARTUP",
    owner_email: str = "owner@acme.com",
):
    """
    Returns (tenant, owner, password) for a company with an OWNER and an ACTIVE subscription.
    """
    from talentloop.crud.subscriptions import get_plan_by_name

    tenant = Tenant(name=slug.title(), slug=slug, type=TenantType.COMPANY.value)
    db.add(tenant)
    await db.flush()

    owner, password = await create_account_user(
        db, tenant=tenant, name="Olivia Owner", email=owner_email, role=RoleType.OWNER
    )
    plan = await get_plan_by_name(db, plan_name)
    await ensure_subscription(db, tenant_id=tenant.id, plan=plan)
    await db.commit()
    return tenant, owner, password


async def add_member(db, tenant: Tenant, *, email: str, role: Optional[RoleType] = RoleType.MEMBER, name: str = "Team Member"):
    user, password = await create_account_user(db, tenant=tenant, name=name, email=email, role=role)
    await db.commit()
    return user, password


TEST_PRICE_IDS = {
    "PRO": "price_test_pro",
    "PREMIUM": "price_test_premium",
    "STARTUP": "price_test_startup",
    "BUSINESS": "price_test_business",
}


async def configure_price_ids(db) -> dict[str, str]:
    """
    Give the seeded paid plans Stripe price ids. Returns plan name -> price id.
    """
    from talentloop.crud.subscriptions import get_plan_by_name

    for name, price_id in TEST_PRICE_IDS.items():
        plan = await get_plan_by_name(db, name)
        plan.stripe_price_id = price_id
    await db.commit()
    return dict(TEST_PRICE_IDS)
